import os

from gitlet import base


def write(repo, path, text):
    full_path = os.path.join(repo.work_dir, path)
    os.makedirs(os.path.dirname(full_path), exist_ok=True)
    with open(full_path, 'wb') as f:
        f.write(text.encode())


def read(repo, path):
    with open(os.path.join(repo.work_dir, path), 'rb') as f:
        return f.read().decode()


def exists(repo, path):
    return os.path.isfile(os.path.join(repo.work_dir, path))


def commit_file(repo, path, text, message):
    write(repo, path, text)
    base.add(repo, path)
    return base.commit(repo, message)


def commit_ids(repo):
    return set(repo.objects.iter_objects('commit'))
