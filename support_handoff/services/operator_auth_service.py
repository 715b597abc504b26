from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from support_handoff.core.config import get_settings
from support_handoff.core.security import create_operator_access_token, verify_password
from support_handoff.infra.db.models import Operator
from support_handoff.infra.db.repositories import OperatorRepository
from support_handoff.services.errors import OperatorAuthenticationError


@dataclass(slots=True)
class OperatorLoginResult:
    access_token: str
    token_type: str
    expires_at: datetime
    operator: Operator


class OperatorAuthService:
    def __init__(
        self,
        session: AsyncSession,
        operators: OperatorRepository | None = None,
    ) -> None:
        self.session = session
        self.operators = operators or OperatorRepository(session)
        self.settings = get_settings()

    async def login(self, username: str, password: str) -> OperatorLoginResult:
        normalized_username = username.strip().lower()
        if not normalized_username:
            raise OperatorAuthenticationError()

        operator = await self.operators.get_by_username(normalized_username)
        if operator is None:
            raise OperatorAuthenticationError()
        if not operator.is_active:
            raise OperatorAuthenticationError("Operator account is inactive")
        if not verify_password(password, operator.password_hash):
            raise OperatorAuthenticationError()

        token, expires_at = create_operator_access_token(
            operator_id=operator.id,
            tenant_id=operator.tenant_id,
            secret=self.settings.operator_auth_secret,
            ttl_minutes=self.settings.operator_auth_token_ttl_minutes,
        )
        return OperatorLoginResult(
            access_token=token,
            token_type="bearer",
            expires_at=expires_at,
            operator=operator,
        )
