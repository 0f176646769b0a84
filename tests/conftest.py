import asyncio
import inspect
import os
import sys
from pathlib import Path

# Environment defaults before any import that reads settings or builds clients
os.environ.setdefault("COGNITO_REGION", "us-east-1")
os.environ.setdefault("COGNITO_USER_POOL_ID", "us-east-1_TestPool")
os.environ.setdefault("COGNITO_CLIENT_ID", "test-client-id")
os.environ.setdefault("EMAIL_TRANSPORT", "smtp")
os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")
os.environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from inboxauth.service.runtime import reset_runtime_for_tests  # noqa: E402


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")


ISSUER = "https://cognito-idp.us-east-1.amazonaws.com/us-east-1_TestPool"
CLIENT_ID = "test-client-id"
KEY_ID = "test-kid"


class FakeEmailService:
    """Records passcode emails instead of sending them."""

    def __init__(self, fail_with: Exception | None = None):
        self.sent = []
        self.fail_with = fail_with

    def send_passcode(self, to_email, passcode):
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append((to_email, passcode))


class FakeIdentityPlatform:
    """In-memory identity platform; set ``errors[<operation>]`` to make a call fail."""

    def __init__(self):
        self.calls = []
        self.errors = {}
        self.challenge = None
        self.grant = None
        self.attributes = {"email": "user@example.com"}

    def _record(self, operation, *args):
        self.calls.append((operation, args))
        if operation in self.errors:
            raise self.errors[operation]

    def initiate_custom_auth(self, email):
        from inboxauth.service.identity import CUSTOM_CHALLENGE, LoginChallenge

        self._record("initiate_custom_auth", email)
        return self.challenge or LoginChallenge(CUSTOM_CHALLENGE, "session-1")

    def respond_to_challenge(self, email, session, answer):
        self._record("respond_to_challenge", email, session, answer)
        return self.grant

    def refresh(self, refresh_token):
        self._record("refresh", refresh_token)
        return self.grant

    def revoke(self, refresh_token):
        self._record("revoke", refresh_token)

    def get_user_attributes(self, subject):
        self._record("get_user_attributes", subject)
        return dict(self.attributes)

    def operations(self):
        return [operation for operation, _ in self.calls]


@pytest.fixture
def fake_platform():
    return FakeIdentityPlatform()


@pytest.fixture
def fake_email():
    return FakeEmailService()


@pytest.fixture(scope="session")
def rsa_key():
    from cryptography.hazmat.primitives.asymmetric import rsa

    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def jwks_document(rsa_key):
    import json

    from jwt.algorithms import RSAAlgorithm

    jwk = json.loads(RSAAlgorithm.to_jwk(rsa_key.public_key()))
    jwk.update({"kid": KEY_ID, "alg": "RS256", "use": "sig"})
    return {"keys": [jwk]}


@pytest.fixture
def mint_token(rsa_key):
    """Build a signed access token; keyword arguments override claims."""
    import time

    import jwt

    def _mint(kid=KEY_ID, key=None, **overrides):
        now = int(time.time())
        claims = {
            "sub": "user-sub-1",
            "iss": ISSUER,
            "client_id": CLIENT_ID,
            "token_use": "access",
            "iat": now,
            "exp": now + 3600,
        }
        claims.update(overrides)
        claims = {name: value for name, value in claims.items() if value is not None}
        return jwt.encode(claims, key or rsa_key, algorithm="RS256", headers={"kid": kid})

    return _mint
