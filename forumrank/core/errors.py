"""Exception types raised by the engine.

Expected outcomes such as vote rejections are returned as values; these
exceptions cover collaborator failures and broken invariants only.
"""


class ForumError(Exception):
    """Base class for engine errors."""


class NotFoundError(ForumError):
    """A referenced item or profile does not exist."""


class PersistenceError(ForumError):
    """A durable write failed.

    A failed vote is undone in memory too. Other failed writes may leave
    memory ahead of storage until the next successful write-through.
    """


class InvariantError(ForumError):
    """Stored data violates an invariant, e.g. an item without an id."""
