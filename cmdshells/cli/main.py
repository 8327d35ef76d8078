import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional, Tuple

from ..errors import CmdShellsError, LaunchError, PermissionEncodingError, ProcessWaitError
from ..executor import Executor
from ..shellspec import ExecutorConfig, ShellKind, config_from_env, load_config

log = logging.getLogger("cmdshells")


def _parse_perm(text: str) -> Tuple[int, ...]:
    text = text.strip()
    if not text.isdigit() or len(text) != 3:
        raise PermissionEncodingError(f"Invalid --perm value {text!r} (expected three digits like 755)")
    return tuple(int(ch) for ch in text)


def _strip_remainder(cmd: List[str]) -> List[str]:
    if cmd and cmd[0] == "--":
        return cmd[1:]
    return cmd


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="cmdshells", description="Run shell commands and stream their output")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--shell", choices=[k.value for k in ShellKind] + ["pwsh"], default=None, help="Shell to run commands with (default: auto)")
    parser.add_argument("--config", default=None, help="YAML config file (default: $CMDSHELLS_CONFIG)")
    parser.add_argument("--cwd", default=None, help="Working directory")
    parser.add_argument("--debug", action="store_true", help="Inherit stdin and mirror child stderr")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # cmdshells run -- <command> [args...]
    run_parser = subparsers.add_parser("run", help="Stream a command's output line by line")
    run_parser.add_argument("--json", action="store_true", help="Emit one JSON object per event")
    run_parser.add_argument("--show-eof", action="store_true", help="Also print end-of-stream events")
    run_parser.add_argument("cmd", nargs=argparse.REMAINDER, help="Command string and extra args (prefix with --)")

    # cmdshells exec -- <command> [args...]
    exec_parser = subparsers.add_parser("exec", help="Run a command and print its buffered stdout")
    exec_parser.add_argument("cmd", nargs=argparse.REMAINDER, help="Command string and extra args (prefix with --)")

    mkdir_parser = subparsers.add_parser("mkdir", help="Create a directory")
    mkdir_parser.add_argument("name")
    mkdir_parser.add_argument("--perm", default="755", help="Permission digits (default: 755)")

    rm_parser = subparsers.add_parser("rm", help="Remove a file or empty directory")
    rm_parser.add_argument("path")

    shell_parser = subparsers.add_parser("shell", help="Print the resolved shell binding")
    # SUPPRESS keeps a top-level --shell when this one is not given.
    shell_parser.add_argument("--shell", choices=[k.value for k in ShellKind] + ["pwsh"], default=argparse.SUPPRESS, help="Shell to resolve")
    return parser


def _load_config(args) -> ExecutorConfig:
    if args.config:
        return load_config(args.config)
    return config_from_env()


async def run_async(args, out=None) -> int:
    out = out or sys.stdout
    executor = Executor(args.shell, config=_load_config(args), cwd=args.cwd)
    if args.debug:
        executor.debug()

    if args.command == "shell":
        binding = executor.binding
        print(f"{binding.executable} {binding.inline_flag}", file=out)
        return 0

    if args.command == "mkdir":
        await executor.mkdir(args.name, *_parse_perm(args.perm))
        return 0

    if args.command == "rm":
        await executor.rm(args.path)
        return 0

    cmd = _strip_remainder(list(args.cmd or []))
    if not cmd:
        raise SystemExit(f"cmdshells {args.command} requires a command. Example: cmdshells {args.command} -- 'echo hello'")
    command, extra = cmd[0], cmd[1:]

    if args.command == "exec":
        try:
            output = await executor.execute(command, *extra)
        except ProcessWaitError as exc:
            out.write(exc.output)
            if exc.stderr:
                sys.stderr.write(exc.stderr)
            return exc.returncode if exc.returncode and exc.returncode > 0 else 1
        out.write(output)
        return 0

    failed = False
    async with await executor.async_execute(command, *extra) as session:
        async for event in session:
            if event.failed:
                failed = True
            if event.is_eof and not args.show_eof:
                continue
            if args.json:
                print(json.dumps(event.to_dict()), file=out, flush=True)
            elif event.is_error:
                print(f"!!!| {event.error}", file=out, flush=True)
            else:
                print(f"{'err' if event.is_stderr else 'out'}| {event.line}", file=out, flush=True)
    code = session.returncode
    if code is not None and code > 0:
        return code
    return 1 if failed else 0


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        code = asyncio.run(run_async(args))
    except KeyboardInterrupt:
        code = 130
    except LaunchError as exc:
        log.error("%s", exc)
        code = 127
    except (CmdShellsError, ValueError) as exc:
        log.error("%s", exc)
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
