from uuid import UUID


def tenant_operators_channel(tenant_id: UUID) -> str:
    return f"tenant:{tenant_id}:operators"


def operator_channel(operator_id: UUID) -> str:
    return f"operator:{operator_id}"


def handoff_channel(handoff_id: UUID) -> str:
    return f"handoff:{handoff_id}"
