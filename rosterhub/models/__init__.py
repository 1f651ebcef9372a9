from rosterhub.models.audit_event import AuditEvent
from rosterhub.models.authorized_user import AuthorizedUser
from rosterhub.models.import_job import ImportJob
from rosterhub.models.profile import Profile, ProfileRole
from rosterhub.models.rbac import Role, UserRole
from rosterhub.models.team import Team, TeamMember
from rosterhub.models.user import User

__all__ = [ "AuditEvent", "AuthorizedUser", "ImportJob",
           "Profile", "ProfileRole", "Role", "UserRole",
           "Team", "TeamMember", "User" ]
