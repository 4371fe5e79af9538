import os
import sys
from datetime import datetime

from loguru import logger

from . import base, data, remote
from . import types
from .errors import FatalError, GitletError, UsageError

LOG_LEVEL = os.environ.get('GITLET_LOG_LEVEL', 'WARNING')


def main(argv=None) -> int:
    logger.remove()
    logger.add(sys.stderr, level=LOG_LEVEL, format='{level}: {message}')

    argv = sys.argv[1:] if argv is None else argv
    if not argv:
        print('Please enter a command.')
        return 0
    name, *operands = argv
    commands = get_commands()
    if name not in commands:
        print('No command with that name exists.')
        return 0
    func, count = commands[name]

    try:
        if name == 'init':
            _expect(operands, count)
            base.init('.')
            return 0
        with data.session(data.Repository.at('.').git_dir, '.') as repo:
            if count is not None:
                _expect(operands, count)
            func(repo, *operands)
    except FatalError as e:
        logger.opt(exception=e).debug('fatal error')
        print(f'fatal: {e}')
        return 1
    except OSError as e:
        print(f'fatal: {e}')
        return 1
    except GitletError as e:
        print(e)
    return 0


def _expect(operands, count):
    if len(operands) != count:
        raise UsageError()


def get_commands():
    # name -> (handler, operand count or None when the handler checks)
    return {
        'init': (None, 0),
        'add': (add, 1),
        'commit': (commit, None),
        'rm': (rm, 1),
        'checkout': (checkout, None),
        'log': (log, 0),
        'global-log': (global_log, 0),
        'find': (find, 1),
        'status': (status, 0),
        'branch': (branch, 1),
        'rm-branch': (rm_branch, 1),
        'reset': (reset, 1),
        'merge': (merge, 1),
        'add-remote': (add_remote, 2),
        'rm-remote': (rm_remote, 1),
        'push': (push, 2),
        'fetch': (fetch, 2),
        'pull': (pull, 2),
    }


def add(repo, path):
    base.add(repo, path)


def commit(repo, *operands):
    if len(operands) > 1:
        raise UsageError()
    base.commit(repo, operands[0] if operands else '')


def rm(repo, path):
    base.remove(repo, path)


def checkout(repo, *operands):
    if len(operands) == 2 and operands[0] == '--':
        base.checkout_file(repo, operands[1])
    elif len(operands) == 3 and operands[1] == '--':
        base.checkout_file(repo, operands[2], operands[0])
    elif len(operands) == 1:
        base.checkout_branch(repo, operands[0])
    else:
        raise UsageError()


def format_date(timestamp: int) -> str:
    date = datetime.fromtimestamp(timestamp).astimezone()
    return f'{date:%a %b} {date.day} {date:%H:%M:%S %Y %z}'


def format_commit(oid: types.OID, commit_: types.Commit) -> str:
    lines = ['===', f'commit {oid}']
    if commit_.is_merge:
        lines.append(f'Merge: {commit_.parents[0][:7]} {commit_.parents[1][:7]}')
    lines.append(f'Date: {format_date(commit_.timestamp)}')
    lines.append(commit_.message)
    return '\n'.join(lines) + '\n'


def log(repo):
    for oid, commit_ in base.iter_log(repo):
        print(format_commit(oid, commit_))


def global_log(repo):
    for oid, commit_ in base.iter_all_commits(repo):
        print(format_commit(oid, commit_))


def find(repo, message):
    for oid in base.find(repo, message):
        print(oid)


def format_status(status: types.Status) -> str:
    sections = [
        ('Branches', [f'*{name}' if name == status.current_branch else name
                      for name in status.branches]),
        ('Staged Files', status.staged),
        ('Removed Files', status.removed),
        ('Modifications Not Staged For Commit', [f'{path} ({change})'
                                                 for path, change in status.modified]),
        ('Untracked Files', status.untracked),
    ]
    return '\n'.join(f'=== {title} ===\n' + ''.join(f'{line}\n' for line in lines)
                     for title, lines in sections)


def status(repo):
    print(format_status(base.get_status(repo)))


def branch(repo, name):
    base.create_branch(repo, name)


def rm_branch(repo, name):
    base.remove_branch(repo, name)


def reset(repo, commit_id):
    base.reset(repo, commit_id)


def report_merge(result: types.MergeResult):
    if result.outcome == 'already_ancestor':
        print('Given branch is an ancestor of the current branch.')
    elif result.outcome == 'fast_forward':
        print('Current branch fast-forwarded.')
    elif result.conflict:
        print('Encountered a merge conflict.')


def merge(repo, name):
    report_merge(base.merge(repo, name))


def add_remote(repo, name, address):
    remote.add_remote(repo, name, address)


def rm_remote(repo, name):
    remote.remove_remote(repo, name)


def push(repo, remote_name, name):
    remote.push(repo, remote_name, name)


def fetch(repo, remote_name, name):
    remote.fetch(repo, remote_name, name)


def pull(repo, remote_name, name):
    report_merge(remote.pull(repo, remote_name, name))
