"""Dispatcher for ``python -m code_vec {embed,query} [options]`` and the
``code-vec`` console script.

``embed`` runs the embedding pipeline against a Kùzu graph database;
``query`` searches the resulting vector index.  Each subcommand owns its
own argparse options.
"""

import sys

_COMMANDS: dict[str, str] = {
    "embed": "code_vec.build_embeddings",
    "query": "code_vec.query_embeddings",
}

_HELP = """\
usage: code-vec {embed,query} [options]
       python -m code_vec {embed,query} [options]

subcommands:
  embed    Embed graph nodes and build the vector index
  query    Run a semantic (or one-hop context) query

Run  python -m code_vec <subcommand> --help  for per-command options.
"""


def main() -> None:
    if len(sys.argv) < 2 or sys.argv[1] in ("-h", "--help"):
        print(_HELP, end="")
        sys.exit(0)

    subcommand = sys.argv[1]
    if subcommand not in _COMMANDS:
        print(f"error: unknown subcommand '{subcommand}'\n", file=sys.stderr)
        print(_HELP, end="", file=sys.stderr)
        sys.exit(1)

    # Rewrite argv so the target module's argparse sees a clean sys.argv:
    #   ["code_vec", "embed", "--db", "graph.kuzu"]
    #   → ["python -m code_vec embed", "--db", "graph.kuzu"]
    sys.argv = [f"python -m code_vec {subcommand}", *sys.argv[2:]]

    import importlib

    mod = importlib.import_module(_COMMANDS[subcommand])
    mod.main()


if __name__ == "__main__":
    main()
