import asyncio
import sys
from pathlib import Path

from plang import VERSION
from plang.plang_compiler import Compiler
from plang.plang_printer import Printer
from plang.plang_runtime import ExecutionOptions

# A basic awaitable input prompt.
async def ainput(prompt: str) -> str:
    loop = asyncio.get_running_loop()
    sys.stdout.write(prompt)
    sys.stdout.flush()
    return await loop.run_in_executor(None, sys.stdin.readline)

def _options_from_argv(argv) -> ExecutionOptions:
    """`--config <file>` loads limits from a JSON or YAML file."""
    if "--config" in argv:
        index = argv.index("--config")
        if index + 1 >= len(argv):
            print("Error: --config needs a file argument", file=sys.stderr)
            raise SystemExit(2)
        return ExecutionOptions.load(argv[index + 1])
    return ExecutionOptions()

async def run_script_file(file_path: str, options: ExecutionOptions = None):
    """Run a PL script file non-interactively and exit with appropriate status."""
    compiler = Compiler(options)
    executor = compiler.create_executor()
    printer = Printer()
    p = Path(file_path)
    try:
        source = p.read_text(encoding="utf-8")
    except FileNotFoundError:
        print(f"Error: file not found: {file_path}", file=sys.stderr)
        raise SystemExit(1)
    result = await asyncio.to_thread(executor.run, source)
    if result.output:
        sys.stdout.write(result.output)
    if result.status == 'error':
        print(result.format_error(), file=sys.stderr)
        raise SystemExit(1)
    if result.value is not None:
        print(printer.pformat(result.value))

async def main():
    """Run a script file when provided, otherwise start the interactive REPL."""
    argv = sys.argv[1:]
    options = _options_from_argv(argv)
    if argv:
        arg = argv[0]
        # Treat argv[0] as a script file when it's not a flag; run_script_file handles missing files
        if not arg.startswith("-"):
            await run_script_file(arg, options)
            return

    print(f"PL REPL v{VERSION}")
    print("Type 'exit' or press Ctrl+D to quit.")

    # Setup
    executor = Compiler(options).create_executor()
    printer = Printer()

    # REPL Loop
    while True:
        try:
            raw = await ainput(">> ")
            if raw == "":
                raise EOFError
            line = raw.strip()

            if not line:
                continue
            if line == "exit":
                break

            result = await asyncio.to_thread(executor.run, line)

            if result.output:
                sys.stdout.write(result.output)

            if result.status == 'error':
                # Pretty, location-aware message
                print(result.format_error(), file=sys.stderr)
                continue

            # Print final result
            if result.value is not None:
                print(printer.pformat(result.value))

        except EOFError:
            print("\nExiting.")
            break
        except Exception as e:
            # Keep the session alive on host-side failures
            print(f"Error: {e}", file=sys.stderr)

    executor.cleanup()

def cli():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nExiting.")

if __name__ == "__main__":
    cli()
