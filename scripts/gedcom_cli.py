import argparse
import os
import sys
from pathlib import Path

from sqlalchemy.orm import sessionmaker

from gedtree import create_app
from gedtree.changes import accept_record, pending_changes
from gedtree.db import get_engine, transaction
from gedtree.exceptions import GedTreeError
from gedtree.tree import create_tree, find_tree_by_name


def _app_from_args(args):
    app = create_app({
        "DATABASE": args.db,
        "TESTING": False,
    })
    return app, sessionmaker(bind=get_engine())


def _tree_or_exit(session, name):
    tree = find_tree_by_name(session, name)
    if tree is None:
        print(f"no tree called {name!r}", file=sys.stderr)
        raise SystemExit(2)
    return tree


def cmd_create_tree(args) -> int:
    app, session_factory = _app_from_args(args)
    with app.app_context():
        session = session_factory()
        try:
            tree = create_tree(session, args.name, args.title or args.name)
            print(f"tree_id={tree.id}")
            return 0
        finally:
            session.close()


def cmd_import(args) -> int:
    app, session_factory = _app_from_args(args)
    with app.app_context():
        session = session_factory()
        try:
            tree = _tree_or_exit(session, args.tree)
            source = Path(args.file)
            with open(source, "rb") as fh:
                chunks = tree.import_gedcom_file(fh, source.name, block_size=app.config["GEDCOM_BLOCK_SIZE"])
            records = tree.import_chunks()
            print(f"chunks={chunks} records={records}")
            return 0
        finally:
            session.close()


def cmd_export(args) -> int:
    app, session_factory = _app_from_args(args)
    with app.app_context():
        session = session_factory()
        try:
            tree = _tree_or_exit(session, args.tree)
            target = Path(args.out)
            partial = target.with_name(target.name + ".part")
            try:
                with open(partial, "wb") as fh:
                    count = tree.export_gedcom(
                        fh,
                        batch_size=app.config["EXPORT_BATCH_SIZE"],
                        buffer_size=app.config["EXPORT_BUFFER_SIZE"],
                    )
            except GedTreeError:
                partial.unlink(missing_ok=True)
                raise
            partial.replace(target)
            print(f"records={count} file={target}")
            return 0
        finally:
            session.close()


def cmd_accept_all(args) -> int:
    app, session_factory = _app_from_args(args)
    with app.app_context():
        session = session_factory()
        try:
            tree = _tree_or_exit(session, args.tree)
            xrefs = sorted({c.xref for c in pending_changes(session, tree.id)})
            accepted = 0
            with transaction(session):
                for xref in xrefs:
                    accepted += accept_record(session, tree.id, xref)
            print(f"accepted={accepted}")
            return 0
        finally:
            session.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="GEDCOM tree import / export tools")
    parser.add_argument("--db", default=os.environ.get("APP_DB_PATH") or "data/gedtree.sqlite")

    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create-tree", help="Create an empty tree")
    create.add_argument("name")
    create.add_argument("--title", default=None)
    create.set_defaults(func=cmd_create_tree)

    imp = sub.add_parser("import", help="Replace a tree's data with a GEDCOM file")
    imp.add_argument("tree")
    imp.add_argument("file")
    imp.set_defaults(func=cmd_import)

    exp = sub.add_parser("export", help="Write a tree to a GEDCOM file")
    exp.add_argument("tree")
    exp.add_argument("out")
    exp.set_defaults(func=cmd_export)

    acc = sub.add_parser("accept-all", help="Accept every pending change in a tree")
    acc.add_argument("tree")
    acc.set_defaults(func=cmd_accept_all)

    return parser


def main() -> int:
    parser = build_parser()
    args = parser.parse_args()
    return args.func(args)


if __name__ == "__main__":
    raise SystemExit(main())
