from dataclasses import asdict, dataclass

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from errors import AuthenticationError

TOKEN_COOKIE = "session-token"


@dataclass(frozen=True)
class Identity:
    account_id: int
    email: str
    display_name: str


class Authenticator:
    """Issues and decodes signed session tokens carrying an ``Identity``."""

    def __init__(self, secret_key, max_age=3600):
        self._serializer = URLSafeTimedSerializer(secret_key, salt="session-token")
        self.max_age = max_age

    def issue(self, identity: Identity) -> str:
        return self._serializer.dumps(asdict(identity))

    def decode(self, token: str) -> Identity:
        try:
            claims = self._serializer.loads(token, max_age=self.max_age)
        except SignatureExpired:
            raise AuthenticationError("session expired", error_code="SESSION_EXPIRED")
        except BadSignature:
            raise AuthenticationError("invalid session token", error_code="INVALID_TOKEN")
        try:
            return Identity(int(claims["account_id"]), claims["email"], claims["display_name"])
        except (KeyError, TypeError, ValueError):
            raise AuthenticationError("invalid session token", error_code="INVALID_TOKEN")

    def authenticate(self, request) -> Identity:
        """Identity from an ``Authorization: Bearer`` header or the session cookie."""
        token = None
        header = request.headers.get("Authorization", "")
        if header.lower().startswith("bearer "):
            token = header[7:].strip()
        if not token:
            token = request.cookies.get(TOKEN_COOKIE)
        if not token:
            raise AuthenticationError("authentication required")
        return self.decode(token)
