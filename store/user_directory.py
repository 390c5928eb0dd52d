"""In-memory user lookup used for ownership and admin checks."""

from scheduler.ports import User, UserDirectory, UserRole


class InMemoryUserDirectory(UserDirectory):
    """Known users keyed by id.

    With ``default_role`` set, ids that were never added resolve to a user
    with that role instead of being unknown.
    """

    def __init__(self, users: list[User] | None = None, default_role: UserRole | str | None = None):
        self._users: dict[str, User] = {u.user_id: u for u in users or []}
        self._default_role = UserRole(default_role) if default_role else None

    def add(self, user_id: str, role: UserRole | str = UserRole.USER) -> User:
        user = User(user_id=user_id, role=UserRole(role))
        self._users[user_id] = user
        return user

    async def find_by_id(self, user_id: str) -> User | None:
        user = self._users.get(user_id)
        if user is None and self._default_role is not None:
            return User(user_id=user_id, role=self._default_role)
        return user

    def all(self) -> list[User]:
        return list(self._users.values())
