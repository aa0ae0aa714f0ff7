from dataclasses import dataclass
from typing import Optional

from itsdangerous import BadSignature, URLSafeTimedSerializer

from errors import AuthError

BEARER_PREFIX = "Bearer "


@dataclass(frozen=True)
class Identity:
    uid: str
    email: Optional[str] = None


class TokenVerifier:
    """Verifies bearer tokens signed with the identity provider's shared secret."""

    def __init__(self, secret: str, max_age_secs: int) -> None:
        self.max_age_secs = max_age_secs
        self._serializer = URLSafeTimedSerializer(secret, salt="expense-logger-auth")

    def issue(self, uid: str, email: Optional[str] = None) -> str:
        return self._serializer.dumps({"uid": uid, "email": email})

    def verify(self, token: str) -> Identity:
        try:
            data = self._serializer.loads(token, max_age=self.max_age_secs)
        except BadSignature as exc:
            # SignatureExpired is a BadSignature as well.
            raise AuthError("Invalid or expired token", status_code=403) from exc

        uid = data.get("uid") if isinstance(data, dict) else None
        if not isinstance(uid, str) or not uid:
            raise AuthError("Invalid or expired token", status_code=403)
        return Identity(uid=uid, email=data.get("email"))


def bearer_token(header: Optional[str]) -> str:
    if not header or not header.startswith(BEARER_PREFIX):
        raise AuthError("No token provided", status_code=401)
    token = header[len(BEARER_PREFIX):].strip()
    if not token:
        raise AuthError("No token provided", status_code=401)
    return token
