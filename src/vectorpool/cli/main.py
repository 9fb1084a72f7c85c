"""Vectorpool CLI - Main command-line interface."""

import click
from dotenv import load_dotenv

load_dotenv()


class LazyGroup(click.Group):
    """A Click group that lazily loads subcommands."""

    def __init__(self, *args, lazy_subcommands=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.lazy_subcommands = lazy_subcommands or {}
        self._loaded_commands = {}

    def list_commands(self, ctx):
        lazy = list(self.lazy_subcommands.keys())
        regular = list(self.commands.keys())
        return sorted(set(lazy + regular))

    def get_command(self, ctx, name):
        if name in self.commands:
            return self.commands[name]

        if name in self.lazy_subcommands:
            if name not in self._loaded_commands:
                module_path, cmd_name = self.lazy_subcommands[name]
                module = __import__(module_path, fromlist=[cmd_name])
                self._loaded_commands[name] = getattr(module, cmd_name)
            return self._loaded_commands[name]
        return None


@click.group(
    cls=LazyGroup,
    lazy_subcommands={
        "bulk": ("vectorpool.workflows.bulk_embed.cli", "bulk_group"),
        "search": ("vectorpool.workflows.vectorize.cli", "search_cmd"),
        "vectorize": ("vectorpool.workflows.vectorize.cli", "vectorize_cmd"),
    },
)
@click.version_option(prog_name="vectorpool")
@click.option("-v", "--verbose", is_flag=True, help="Log debug output to stderr")
def main(verbose: bool):
    """
    Vectorpool - knowledge pool embeddings.

    Run bulk embedding jobs against batch provider APIs and search the results.
    """
    from vectorpool.cli.log import configure_logging

    configure_logging(verbose=verbose)


from vectorpool.cli.init import init  # noqa: E402

main.add_command(init)


if __name__ == "__main__":
    main()
