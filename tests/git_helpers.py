from pathlib import Path

import git

AUTHOR = git.Actor("Ada Lovelace", "ada@example.com")
OTHER_AUTHOR = git.Actor("Grace Hopper", "grace@example.com")


def commit_file(
    repo: git.Repo,
    name: str,
    content: str,
    message: str,
    author: git.Actor = AUTHOR,
) -> git.Commit:
    path = Path(repo.working_tree_dir) / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    repo.index.add([name])
    return repo.index.commit(message, author=author, committer=author)
