#!/usr/bin/env python3
"""climm — command-line mod manager entry point"""

from __future__ import annotations

import argparse
import difflib
import faulthandler
import logging
import os
import subprocess
import sys
import traceback
from logging.handlers import RotatingFileHandler
from pathlib import Path

from errors import ClimmError, UnknownGameError
from library import Library, default_home
from load_order import Above, Below, Bottom, Down, Top, Up
from mod_manager import DeployReport, ModManager
from plugins import collect_plugins, read_plugin_list


def setup_logging(log_dir: Path) -> logging.Logger:
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        log_dir / "climm.log",
        maxBytes=1 * 1024 * 1024,  # 1 MB
        backupCount=2,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter("%(asctime)s  %(levelname)-8s  %(name)s  %(message)s"))

    # Modules log under their own names; route them all to the same file
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)
    return logging.getLogger("climm")


def install_crash_handler(logger: logging.Logger, log_dir: Path):
    def handle_exception(exc_type, exc_value, exc_tb):
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_tb)
            return
        logger.critical(
            "Unhandled exception:\n%s",
            "".join(traceback.format_exception(exc_type, exc_value, exc_tb)),
        )
        sys.__excepthook__(exc_type, exc_value, exc_tb)

    sys.excepthook = handle_exception

    # faulthandler can't use logging after a hard crash, so it gets its own file
    crash_file = log_dir / "crash.log"
    faulthandler.enable(open(crash_file, "w"), all_threads=True)


def prompt_part_selector(mod_name: str, candidates: list[Path]) -> list[Path]:
    """Ask which installer options of a multi-option mod to install."""
    print(f"{mod_name} has several install options:")
    for i, path in enumerate(candidates, start=1):
        print(f"  {i}. {path.name}")
    while True:
        answer = input("Options to install, in order (e.g. 1 3), blank for all: ").strip()
        if not answer:
            return list(candidates)
        try:
            picks = [int(tok) for tok in answer.replace(",", " ").split()]
        except ValueError:
            print("Please enter option numbers.")
            continue
        if all(1 <= n <= len(candidates) for n in picks):
            return [candidates[n - 1] for n in picks]
        print(f"Option numbers must be between 1 and {len(candidates)}.")


def open_folder(path: Path) -> bool:
    """Show *path* in the desktop file manager."""
    if not path.is_dir():
        print(f"{path} does not exist yet.")
        return False
    if sys.platform == "win32":
        os.startfile(str(path))
    elif sys.platform == "darwin":
        subprocess.Popen(["open", str(path)])
    else:
        subprocess.Popen(["xdg-open", str(path)])
    return True


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="climm", description="Command-line interface mod manager")
    parser.add_argument("--home", type=Path, help="climm home directory (default: ~/.climm)")
    sub = parser.add_subparsers(dest="command", required=True)

    init = sub.add_parser("init", help="Add a game to climm")
    init.add_argument("name", help="The name of the game")
    init.add_argument("game_folder", type=Path, help="The game's main folder")
    init.add_argument("-d", "--data", type=Path, help="The game's data folder, relative to the game folder")
    init.add_argument("-p", "--plugins", type=Path, help="The game's plugin list file")
    init.add_argument("-e", "--exe", type=Path, help="The game's executable, relative to the game folder")
    init.add_argument("--method", choices=["hardlink", "symlink"], default="hardlink", help="How files are deployed")

    sub.add_parser("deploy", aliases=["go"], help="Deploy mods")

    add = sub.add_parser("add", help="Add mod archives to the active game")
    add.add_argument("archives", nargs="+", type=Path, help="Paths to the archive files")
    add.add_argument("-m", "--move", action="store_true", help="Move the files instead of copying them")
    add.add_argument("-e", "--enable", action="store_true", help="Enable all added mods")

    scan = sub.add_parser("scan", help="Register archives already in the archive store")
    scan.add_argument("-e", "--enable", action="store_true", help="Enable all found mods")

    for name, verb in (("enable", "Enable"), ("disable", "Disable")):
        p = sub.add_parser(name, help=f"{verb} mods")
        p.add_argument("names", nargs="*", help="Mod names; they do not need to be exact")
        p.add_argument("--all", action="store_true", help=f"{verb} all mods")

    sub.add_parser("mods", help="List all mods in load order")
    sub.add_parser("plugins", help="List all enabled plugins")

    mv = sub.add_parser("move", help="Move a mod in the load order")
    mv.add_argument("name", help="The name of the mod to move")
    where = mv.add_subparsers(dest="where", required=True)
    where.add_parser("above", help="Move above another mod").add_argument("other")
    where.add_parser("below", help="Move below another mod").add_argument("other")
    where.add_parser("top", help="Move to the top")
    where.add_parser("bottom", help="Move to the bottom")
    where.add_parser("up", help="Move up").add_argument("n", nargs="?", type=int, default=1)
    where.add_parser("down", help="Move down").add_argument("n", nargs="?", type=int, default=1)

    un = sub.add_parser("uninstall", help="Uninstall mods")
    un.add_argument("names", nargs="*", help="The names of the mods to uninstall")
    un.add_argument("-d", "--delete-archives", action="store_true", help="Delete the archives as well")
    un.add_argument("--all", action="store_true", help="Uninstall all mods")

    reset = sub.add_parser("reset-parts", help="Ask again for the install options of mods")
    reset.add_argument("names", nargs="+")

    prof = sub.add_parser("profile", help="Manage profiles")
    prof_sub = prof.add_subparsers(dest="profile_command")
    prof_sub.add_parser("new", help="Create a profile from the current mod list").add_argument("name")
    prof_sub.add_parser("save", help="Save the current profile")
    set_p = prof_sub.add_parser("set", help="Switch to a profile")
    set_p.add_argument("name")
    set_p.add_argument("-d", "--disable-new", action="store_true", help="Disable mods the profile does not list")

    sub.add_parser("set-active", help="Set the active game").add_argument("name")
    sub.add_parser("active", help="Print the name of the active game")
    sub.add_parser("run", help="Run the game")
    for name, what in (("archives", "archives folder"), ("game-folder", "game folder")):
        p = sub.add_parser(name, help=f"Open the active game's {what}")
        p.add_argument("--no-open", action="store_true", help="Only print the path")
    return parser.parse_args(argv)


def destination_from_args(args: argparse.Namespace):
    if args.where == "above":
        return Above(args.other)
    if args.where == "below":
        return Below(args.other)
    if args.where == "top":
        return Top()
    if args.where == "bottom":
        return Bottom()
    if args.where == "up":
        return Up(args.n)
    return Down(args.n)


def print_report(manager: ModManager, report: DeployReport):
    if report.extraction_failures:
        print(f"Skipped: {', '.join(report.extraction_failures)}")
    for issue in manager.validate_paths():
        print(f"  warning: {issue}")


def run_game_command(args: argparse.Namespace, manager: ModManager):
    """Dispatch a per-game command."""
    cmd = args.command
    if cmd in ("deploy", "go"):
        print_report(manager, manager.deploy())
    elif cmd == "add":
        for archive in args.archives:
            manager.add_archive(archive, move_file=args.move, enable=args.enable)
    elif cmd == "scan":
        manager.scan_archives(enable=args.enable)
    elif cmd == "enable":
        manager.enable(args.names, all_mods=args.all)
    elif cmd == "disable":
        manager.disable(args.names, all_mods=args.all)
    elif cmd == "mods":
        for i, mod in enumerate(manager.mods, start=1):
            state = "x" if mod.enabled else " "
            print(f"{i:>3}. [{state}] {mod.name}")
    elif cmd == "plugins":
        if manager.config.plugins_file is not None and manager.config.plugins_file.exists():
            names = read_plugin_list(manager.config.plugins_file)
        else:
            names = collect_plugins(manager.mods)
        for name in names:
            print(name)
    elif cmd == "move":
        manager.move_mod(args.name, destination_from_args(args))
    elif cmd == "uninstall":
        manager.uninstall(args.names, delete_archives=args.delete_archives, all_mods=args.all)
        # Paths the removed mods shadowed must come back from the remaining mods
        print_report(manager, manager.deploy())
    elif cmd == "reset-parts":
        manager.reset_parts(args.names)
    elif cmd == "profile":
        if args.profile_command == "new":
            manager.new_profile(args.name)
        elif args.profile_command == "save":
            manager.save_profile()
        elif args.profile_command == "set":
            manager.set_profile(args.name, disable_new=args.disable_new)
        else:
            active = manager.config.active_profile
            for name in sorted(manager.config.profiles):
                print(("* " if name == active else "  ") + name)
    elif cmd == "run":
        manager.run_game()
    elif cmd in ("archives", "game-folder"):
        path = manager.archives_dir if cmd == "archives" else manager.config.game_folder
        print(path)
        if not args.no_open:
            open_folder(path)


def run(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    home = args.home or default_home()

    logger = setup_logging(home)
    install_crash_handler(logger, home)
    logger.info("climm %s", " ".join(sys.argv[1:]))

    library = Library(home)
    try:
        if args.command == "init":
            library.init_game(
                args.name,
                args.game_folder,
                data_folder=args.data,
                plugins_file=args.plugins,
                executable=args.exe,
                deploy_method=args.method,
            )
            print(f"climm initialized {args.name}")
        elif args.command == "set-active":
            if args.name not in library.config.games:
                suggestion = difflib.get_close_matches(args.name, library.config.games, n=1, cutoff=0.6)
                if suggestion:
                    print(f"Did you mean: {suggestion[0]}?")
                raise UnknownGameError(args.name)
            library.set_active(args.name)
        elif args.command == "active":
            print(library.config.active_game or "No active game")
            return 0
        else:
            def echo(msg: str):
                print(msg)
                logger.info(msg)

            manager = library.active_game(part_selector=prompt_part_selector, log_callback=echo)
            with manager.session():
                run_game_command(args, manager)
        library.save()
    except ClimmError as exc:
        logger.error("%s", exc)
        print(exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(run())
