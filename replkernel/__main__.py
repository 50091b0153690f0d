import argparse
import logging
import sys
from importlib.resources import as_file, files

from jupyter_client.kernelspec import install_kernel_spec

from . import debug
from .errors import ConfigError
from .kernel import run_kernel

log = logging.getLogger("replkernel")


def _run_kernel_from_cli(argv: list[str]) -> None:
    parser = argparse.ArgumentParser(prog="replkernel")
    parser.add_argument("-f", "--connection-file", required=True)
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    args = parser.parse_args(argv)
    logging.basicConfig(level=args.log_level, stream=sys.__stderr__,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    debug.setup()
    try:
        run_kernel(args.connection_file)
    except ConfigError as exc:
        log.error("exception running kernel with args: %r: %s", argv, exc)
        raise SystemExit(1) from exc
    except Exception:
        log.exception("kernel terminated with an unhandled error")
        raise SystemExit(1)


def _install_kernelspec(argv: list[str]) -> None:
    parser = argparse.ArgumentParser(prog="replkernel install")
    scope = parser.add_mutually_exclusive_group()
    scope.add_argument("--user", action="store_true", help="Install into user Jupyter dir")
    scope.add_argument("--sys-prefix", action="store_true", help="Install into current env")
    scope.add_argument("--prefix", help="Install into a given prefix")
    args = parser.parse_args(argv)

    if args.sys_prefix:
        prefix = sys.prefix
    else:
        prefix = args.prefix

    with as_file(files("replkernel") / "kernelspec") as kernel_dir:
        install_kernel_spec(
            str(kernel_dir),
            kernel_name="replkernel",
            user=bool(args.user),
            prefix=prefix,
            replace=True,
        )


def main() -> None:
    argv = sys.argv[1:]
    if argv and argv[0] == "install":
        _install_kernelspec(argv[1:])
        return
    if argv and argv[0] == "run":
        _run_kernel_from_cli(argv[1:])
        return
    _run_kernel_from_cli(argv)


if __name__ == "__main__":
    main()
