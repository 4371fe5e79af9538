import os
import hashlib
import json
import tempfile
import time
from contextlib import contextmanager
from typing import Iterable, Iterator

from loguru import logger

from gitlet import types
from gitlet.errors import FatalError, NotFoundError, ObjectNotFound, RepositoryLocked

try:
    import fcntl
except ImportError:  # pragma: no cover - Windows
    fcntl = None

GIT_DIR = os.environ.get('GITLET_DIR', '.gitlet')
LOCK_TIMEOUT = float(os.environ.get('GITLET_LOCK_TIMEOUT', '10'))

STATE_FILE = 'state.json'
LOCK_FILE = 'lock'


def _atomic_write(path: str, data: bytes) -> None:
    fd, tmp_path = tempfile.mkstemp(dir=os.path.dirname(path), prefix='.tmp-')
    try:
        with os.fdopen(fd, 'wb') as f:
            f.write(data)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except FileNotFoundError:
            pass
        raise


def hash_bytes(data: bytes) -> types.OID:
    return hashlib.sha1(data).hexdigest()


class ObjectStore:
    """
    Content-addressed storage. Objects of each type live in their own
    namespace and are keyed by the SHA-1 of their content.
    """

    def __init__(self, root: str):
        self.root = root

    def _path(self, oid: types.OID, type_: types.ObjectType) -> str:
        return f'{self.root}/{type_}/{oid}'

    def hash_object(self, data: bytes, type_: types.ObjectType = 'blob') -> types.OID:
        oid = hash_bytes(data)
        path = self._path(oid, type_)
        if os.path.isfile(path):
            return oid

        obj = type_.encode() + b'\x00' + data
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            _atomic_write(path, obj)
        except OSError as e:
            raise FatalError(f'Cannot write {type_} {oid}: {e}') from e
        logger.debug(f'wrote {type_} {oid} ({len(data)} bytes)')
        return oid

    def get_object(self, oid: types.OID, expected: types.ObjectType = 'blob') -> bytes:
        try:
            with open(self._path(oid, expected), 'rb') as f:
                obj = f.read()
        except FileNotFoundError:
            raise ObjectNotFound(f'No {expected} with id {oid} exists.') from None
        except OSError as e:
            raise FatalError(f'Cannot read {expected} {oid}: {e}') from e

        type_, sep, content = obj.partition(b'\x00')
        if not sep or type_.decode(errors='replace') != expected:
            raise FatalError(f'Corrupted object {oid}: expected {expected}')
        return content

    def has_object(self, oid: types.OID, type_: types.ObjectType = 'blob') -> bool:
        return os.path.isfile(self._path(oid, type_))

    def iter_objects(self, type_: types.ObjectType = 'blob') -> Iterable[types.OID]:
        dirname = f'{self.root}/{type_}'
        if not os.path.isdir(dirname):
            return
        for name in sorted(os.listdir(dirname)):
            if not name.startswith('.'):
                yield name

    def delete_object(self, oid: types.OID, type_: types.ObjectType = 'blob') -> None:
        try:
            os.remove(self._path(oid, type_))
        except FileNotFoundError:
            pass


class RepoState:
    """The mutable part of a repository: refs, remotes and the staging area."""

    def __init__(self, current_branch='master', branches=None, remotes=None,
                 staged_additions=None, staged_removals=None):
        self.current_branch: str = current_branch
        self.branches: dict[str, types.OID] = branches or {}
        self.remotes: dict[str, str] = remotes or {}
        # path -> oid of the raw content held in the staging store
        self.staged_additions: types.TreeMap = staged_additions or {}
        # path -> oid of HEAD's content at removal time
        self.staged_removals: types.TreeMap = staged_removals or {}

    def to_dict(self) -> dict:
        return {
            'current_branch': self.current_branch,
            'branches': self.branches,
            'remotes': self.remotes,
            'staged_additions': self.staged_additions,
            'staged_removals': self.staged_removals,
        }

    @classmethod
    def from_dict(cls, record: dict) -> 'RepoState':
        try:
            state = cls(**record)
        except TypeError as e:
            raise FatalError(f'Corrupted repository record: {e}') from e
        if state.current_branch not in state.branches:
            raise FatalError(f'Corrupted repository record: '
                             f'unknown current branch {state.current_branch}')
        return state


class Repository:
    """
    Handle on one repository instance: its object store, the staging store
    holding the bytes of pending additions, and its RepoState.

    A handle is inert until load() reads the persisted state; save() writes
    it back. Nothing is written implicitly.
    """

    def __init__(self, git_dir: str, work_dir: str | None = None):
        self.git_dir = os.path.abspath(git_dir)
        self.work_dir = os.path.abspath(work_dir) if work_dir else os.path.dirname(self.git_dir)
        self.objects = ObjectStore(f'{self.git_dir}/objects')
        self.stage = ObjectStore(f'{self.git_dir}/stage')
        self.state = RepoState()
        # Commits are immutable, so both caches stay valid for the handle's lifetime
        self.commit_cache: dict[types.OID, types.Commit] = {}
        self.ancestor_cache: dict[types.OID, frozenset[types.OID]] = {}

    @classmethod
    def at(cls, work_dir: str = '.') -> 'Repository':
        return cls(os.path.join(work_dir, GIT_DIR), work_dir)

    @property
    def state_path(self) -> str:
        return f'{self.git_dir}/{STATE_FILE}'

    @property
    def head(self) -> types.OID:
        return self.state.branches[self.state.current_branch]

    def exists(self) -> bool:
        return os.path.isfile(self.state_path)

    def load(self) -> 'Repository':
        try:
            with open(self.state_path) as f:
                record = json.load(f)
        except FileNotFoundError:
            raise NotFoundError('Not in an initialized Gitlet directory.') from None
        except (OSError, ValueError) as e:
            raise FatalError(f'Cannot read {self.state_path}: {e}') from e
        self.state = RepoState.from_dict(record)
        return self

    def save(self) -> None:
        record = json.dumps(self.state.to_dict(), indent=2, sort_keys=True)
        try:
            os.makedirs(self.git_dir, exist_ok=True)
            _atomic_write(self.state_path, record.encode())
        except OSError as e:
            raise FatalError(f'Cannot write {self.state_path}: {e}') from e

        staged = set(self.state.staged_additions.values())
        for oid in list(self.stage.iter_objects()):
            if oid not in staged:
                self.stage.delete_object(oid)

    def work_path(self, path: types.Path) -> str:
        return os.path.join(self.work_dir, path)


@contextmanager
def locked(git_dir: str, timeout: float | None = None) -> Iterator[None]:
    """Hold the single-writer lock of the repository at `git_dir`."""
    if timeout is None:
        timeout = LOCK_TIMEOUT
    try:
        lock_file = open(f'{git_dir}/{LOCK_FILE}', 'w')
    except OSError as e:
        raise FatalError(f'Cannot open lock in {git_dir}: {e}') from e

    with lock_file:
        if fcntl is None:
            logger.warning('File locking is not available on this platform')
            yield
            return

        deadline = time.monotonic() + timeout
        while True:
            try:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    raise RepositoryLocked()
                time.sleep(0.05)
        try:
            yield
        finally:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)


@contextmanager
def session(git_dir: str, work_dir: str | None = None, readonly: bool = False) -> Iterator[Repository]:
    """
    Lock, load and yield the repository at `git_dir`; save it when the body
    completes. If the body raises, the persisted state is left untouched.
    """
    repo = Repository(git_dir, work_dir)
    if not repo.exists():
        raise NotFoundError('Not in an initialized Gitlet directory.')
    with locked(repo.git_dir):
        repo.load()
        yield repo
        if not readonly:
            repo.save()
