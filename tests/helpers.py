import uuid

from rosterhub.core.errors import IdentityProviderUnavailable
from rosterhub.core.idempotency import claim_import_job
from rosterhub.core.config import settings
from rosterhub.models.authorized_user import AuthorizedUser
from rosterhub.models.profile import Profile
from rosterhub.models.rbac import Role, UserRole
from rosterhub.models.team import Team
from rosterhub.models.user import User
from rosterhub.services.identity import DuplicateExists
from rosterhub.services.identity_provider import LocalIdentityProvider
from rosterhub.services.import_service import submit_import

ADMIN_EMAIL = "admin@local.test"


def ensure_role(db, name: str) -> Role:
    r = db.query(Role).filter(Role.name == name).one_or_none()
    if r:
        return r
    r = Role(name=name)
    db.add(r)
    db.commit()
    db.refresh(r)
    return r


def create_user(db, email: str, full_name="User") -> User:
    u = User(email=email, full_name=full_name, is_active=True)
    db.add(u)
    db.commit()
    db.refresh(u)
    return u


def grant_role(db, user: User, role_name: str):
    role = ensure_role(db, role_name)
    exists = db.query(UserRole).filter(UserRole.user_id == user.id, UserRole.role_id == role.id).one_or_none()
    if not exists:
        db.add(UserRole(user_id=user.id, role_id=role.id))
        db.commit()


def create_admin(db, email: str = ADMIN_EMAIL) -> User:
    u = create_user(db, email, full_name="Admin")
    grant_role(db, u, "ADMIN")
    return u


def admin_headers(email: str = ADMIN_EMAIL) -> dict:
    return {"X-User-Email": email}


def create_profile(db, email: str, *, verified: bool = False, profile_id: uuid.UUID | None = None, **fields) -> Profile:
    p = Profile(
        id=profile_id or uuid.uuid4(),
        email=email,
        verification_status="verified" if verified else "pending",
        **fields,
    )
    db.add(p)
    db.commit()
    db.refresh(p)
    return p


def create_whitelist_entry(db, email: str, **fields) -> AuthorizedUser:
    a = AuthorizedUser(email=email, **fields)
    db.add(a)
    db.commit()
    db.refresh(a)
    return a


def create_team(db, name: str, tg_team_id: str | None = None, category: str | None = None, **fields) -> Team:
    t = Team(name=name, tg_team_id=tg_team_id, category=category, **fields)
    db.add(t)
    db.commit()
    db.refresh(t)
    return t


def csv_bytes(*lines: str) -> bytes:
    return ("\n".join(lines) + "\n").encode("utf-8")


def submit_and_claim(db, storage, *, users=None, teams=None, overrides=None, mapping=None, admin=None):
    """Submit files the way the API does, then claim the job. Returns the claimed job."""
    admin = admin or db.query(User).filter(User.email == ADMIN_EMAIL).one_or_none() or create_admin(db)
    job = submit_import(
        db,
        user=admin,
        storage=storage,
        settings=settings,
        users_file=("users.csv", users) if users is not None else None,
        teams_file=("teams.csv", teams) if teams is not None else None,
        column_mapping=mapping,
        conflict_overrides=overrides,
    )
    claimed = claim_import_job(db, job.id)
    assert claimed is not None
    return claimed


# ---------------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------------

class FakeIdentityProvider(LocalIdentityProvider):
    """
    Local provider with knobs:

    - scripted[email]: results returned (in order) before normal behavior
    - orphan_accounts[email]: account exists upstream, its profile only shows
      up once someone looks it up (trigger lag after a crashed run)
    """

    def __init__(self, session_factory):
        super().__init__(session_factory)
        self.scripted: dict[str, list] = {}
        self.orphan_accounts: dict[str, uuid.UUID] = {}
        self.create_calls: list[str] = []

    def create_identity(self, email, metadata):
        self.create_calls.append(email)
        queue = self.scripted.get(email)
        if queue:
            return queue.pop(0)
        if email in self.orphan_accounts:
            return DuplicateExists()
        return super().create_identity(email, metadata)

    def lookup_identity_by_email(self, email):
        if email in self.orphan_accounts:
            identity_id = self.orphan_accounts.pop(email)
            db = self.session_factory()
            try:
                db.add(Profile(id=identity_id, email=email, verification_status="pending"))
                db.commit()
            finally:
                db.close()
            return identity_id
        return super().lookup_identity_by_email(email)


class UnreachableIdentityProvider:
    def create_identity(self, email, metadata):
        raise IdentityProviderUnavailable("Identity provider unreachable: ConnectError")

    def lookup_identity_by_email(self, email):
        raise IdentityProviderUnavailable("Identity provider unreachable: ConnectError")


class RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.sent: list[tuple[str, dict, list]] = []
        self.fail = fail

    def send_summary(self, admin_email, summary, errors):
        if self.fail:
            raise RuntimeError("mail server down")
        self.sent.append((admin_email, summary, errors))


class SleepRecorder:
    def __init__(self):
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class FakeClock:
    """Advances by ``step`` seconds on every read."""

    def __init__(self, step: float = 0.0):
        self.now = 0.0
        self.step = step

    def __call__(self) -> float:
        self.now += self.step
        return self.now
