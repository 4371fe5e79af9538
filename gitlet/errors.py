"""
Error taxonomy.

Every error carries the diagnostic printed by the command line front-end,
so raising one is enough to report it. None of them is raised after a
repository mutation has become visible.
"""


class GitletError(Exception):
    message = 'Unexpected error.'

    def __init__(self, message=None):
        super().__init__(message or self.message)


class UsageError(GitletError):
    message = 'Incorrect operands.'


class NotFoundError(GitletError):
    pass


class ObjectNotFound(NotFoundError):
    pass


class AmbiguousCommitId(NotFoundError):
    message = 'Commit id prefix matches more than one commit.'


class StateError(GitletError):
    pass


class NoChanges(StateError):
    message = 'No changes added to the commit.'


class NothingToRemove(StateError):
    message = 'No reason to remove the file.'


class UncommittedChanges(StateError):
    message = 'You have uncommitted changes.'


class UntrackedConflict(StateError):
    message = ('There is an untracked file in the way; delete it, '
               'or add and commit it first.')


class NonFastForward(StateError):
    message = 'Please pull down remote changes before pushing.'


class RepositoryLocked(StateError):
    message = 'Repository is locked by another process.'


class FatalError(GitletError):
    """Storage failure or corrupted record."""
