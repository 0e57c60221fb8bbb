# buildenv/cli/main.py
import json
import logging
from functools import wraps
from pathlib import Path

import click

import buildenv.context._globals as _globals
from buildenv import __version__
from buildenv.buildazure.ids import ResourceNames
from buildenv.context.config import Config
from buildenv.context.logger import Logger
from buildenv.errors import BuildEnvError
from buildenv.pipeline import BuildEnvironment

logger = logging.getLogger(__name__)

SECRET_KEYS = {"token", "install_password"}


def _masked(settings: dict) -> dict:
    return {
        section: {
            k: ("***" if k in SECRET_KEYS and v else v) for k, v in values.items()
        } if isinstance(values, dict) else values
        for section, values in settings.items()
    }


def ci_options(fn):
    fn = click.option("--ci-url", help="CI service base URL.")(fn)
    fn = click.option("--token", help="CI service API token (bearer).")(fn)
    return fn


def azure_options(fn):
    fn = click.option("--subscription", help="Subscription id or name.")(fn)
    fn = click.option("--location", help="Azure region, e.g. westeurope.")(fn)
    fn = click.option("--vm-size", help="VM size for build workers and the image build.")(fn)
    fn = click.option("--prefix", help="Prefix for every resource name.")(fn)
    return fn


def image_options(fn):
    fn = click.option("--image-os", type=click.Choice(_globals.IMAGE_OS_TYPES), help="Image OS type.")(fn)
    fn = click.option("--image-name", help="Build worker image name.")(fn)
    fn = click.option("--template", type=click.Path(dir_okay=False), help="Packer template to build the image.")(fn)
    fn = click.option("--image-uri", help="Existing image location; skips the Packer build.")(fn)
    fn = click.option("--install-password", help="Password for the image's build user.")(fn)
    fn = click.option("--rebuild", is_flag=True, help="Build the image even if one is registered.")(fn)
    return fn


def handle_errors(fn):
    """
    Turn buildenv failures, bad settings included, into a warning and exit code 1.
    """

    @wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except BuildEnvError as ex:
            logger.warning(f"{ex}")
            raise SystemExit(1)

    return wrapper


def _settings(ctx: click.Context, **given) -> dict:
    overrides = {
        "ci": {"url": given.get("ci_url"), "token": given.get("token")},
        "azure": {
            "subscription": given.get("subscription"),
            "location": given.get("location"),
            "vm_size": given.get("vm_size"),
            "prefix": given.get("prefix"),
        },
        "image": {
            "os": given.get("image_os"),
            "name": given.get("image_name"),
            "template": given.get("template"),
            "uri": given.get("image_uri"),
            "install_password": given.get("install_password"),
            "rebuild": given.get("rebuild") or None,
        },
    }
    return Config.resolve(ctx.obj["config"], overrides)


@click.group()
@click.version_option(__version__, prog_name="buildenv")
@click.option("--config", "config_path", type=click.Path(dir_okay=False, path_type=Path),
              default=_globals.GLOBAL_CFG_FILE, show_default=True, help="Settings file (TOML, JSON or YAML).")
@click.option("--log-level", type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
              default=None, help="Console log level.")
@click.option("--no-log-file", is_flag=True, help="Log to the console only.")
@click.pass_context
@handle_errors
def cli(ctx, config_path, log_level, no_log_file):
    """Provision an Azure build environment and register it with the CI service."""
    ctx.ensure_object(dict)
    ctx.obj["config"] = config_path
    logging_cfg = Config.resolve(config_path)["logging"]
    Logger.init_logger(
        log_dir=Path(logging_cfg["dir"]),
        level=log_level or logging_cfg["level"],
        to_file=not no_log_file,
    )


@cli.command()
@ci_options
@azure_options
@image_options
@click.option("--non-interactive", is_flag=True, help="Never prompt; fail when a choice is ambiguous.")
@click.pass_context
@handle_errors
def provision(ctx, non_interactive, **given):
    """Create or update every resource and register the build cloud."""
    env = BuildEnvironment(_settings(ctx, **given), interactive=not non_interactive)
    summary = env.provision()
    click.echo(json.dumps(summary, indent=2))


@cli.command()
@ci_options
@azure_options
@image_options
@click.option("--non-interactive", is_flag=True, help="Never prompt for 'az login'.")
@click.pass_context
@handle_errors
def validate(ctx, non_interactive, **given):
    """Check the CI service, Azure login and local tools without changing anything."""
    BuildEnvironment(_settings(ctx, **given), interactive=not non_interactive).validate()
    click.echo("All checks passed.")


@cli.command()
@click.option("--prefix", help="Prefix for every resource name.")
@click.option("--location", required=True, help="Azure region.")
@click.option("--subscription", "subscription_id", required=True, help="Subscription id.")
@click.pass_context
@handle_errors
def names(ctx, prefix, location, subscription_id):
    """Print the resource names a run would use."""
    settings = Config.resolve(ctx.obj["config"], {"azure": {"prefix": prefix}})
    resolved = ResourceNames.build(
        settings["azure"]["prefix"], location, subscription_id, settings["azure"].get("sp_name") or ""
    )
    click.echo(json.dumps(resolved.as_dict(), indent=2))


@cli.group()
def config():
    """Inspect or edit the settings file."""


@config.command("show")
@click.pass_context
@handle_errors
def config_show(ctx):
    """Print effective settings (secrets masked)."""
    click.echo(json.dumps(_masked(Config.resolve(ctx.obj["config"])), indent=2))


@config.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_context
@handle_errors
def config_set(ctx, key, value):
    """Set KEY (section.key) to VALUE in the settings file."""
    section, _, name = key.partition(".")
    defaults = _globals.GLOBAL_CFG_DEFAULT
    if not name or section not in defaults or name not in defaults[section]:
        raise click.BadParameter(f"Unknown setting '{key}'", param_hint="KEY")
    typed = Config.coerce(value, defaults[section][name], label=key)
    Config.write(ctx.obj["config"], set={section: {name: typed}})
    click.echo(f"{key} updated in {ctx.obj['config']}")


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
