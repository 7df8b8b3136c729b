"""CLI entrypoints for parserbuild commands."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from .builder import BuildError, ParserBuilder
from .config import ConfigError, load_catalog, load_settings
from .jobs import JobRunner
from .logging import configure_logging
from .matrix import ALL, PLATFORM_SELECTORS, matrix_to_json, plan_matrix, write_github_output
from .models import MatrixCell, TargetDescriptor
from .platforms import UnsupportedPlatformError
from .signing import MacSigner, SigningCredentials, SigningError
from .summary import render_summary, write_summary
from .upload import Uploader


def _add_verbose_option(
    parser: argparse.ArgumentParser, *, suppress_default: bool = False
) -> None:
    kwargs: dict[str, object] = {
        "action": "store_true",
        "help": "Increase log verbosity for troubleshooting.",
    }
    if suppress_default:
        kwargs["default"] = argparse.SUPPRESS
    else:
        kwargs["default"] = False
    parser.add_argument(
        "-v",
        "--verbose",
        **kwargs,
    )


def _add_log_file_option(
    parser: argparse.ArgumentParser, *, suppress_default: bool = False
) -> None:
    parser.add_argument(
        "--log-file",
        type=Path,
        default=argparse.SUPPRESS if suppress_default else None,
        help="Also write log records to this file.",
    )


def _add_config_option(
    parser: argparse.ArgumentParser, *, suppress_default: bool = False
) -> None:
    parser.add_argument(
        "--config",
        default=argparse.SUPPRESS if suppress_default else ".",
        help="Path to .parserbuild.yml or the directory containing it.",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="parserbuild",
        description="Build tree-sitter parsers for many platforms and publish them by commit SHA.",
    )
    _add_verbose_option(parser)
    _add_log_file_option(parser)
    _add_config_option(parser)
    subparsers = parser.add_subparsers(dest="command", required=True)

    build_parser = subparsers.add_parser(
        "build",
        help="Clone a grammar repository and build its parsers.",
    )
    _add_verbose_option(build_parser, suppress_default=True)
    _add_log_file_option(build_parser, suppress_default=True)
    _add_config_option(build_parser, suppress_default=True)
    build_parser.add_argument("language", help="Language name used for output paths.")
    build_parser.add_argument("repo_url", help="Grammar repository to clone.")
    build_parser.add_argument("ref", nargs="?", default="master", help="Branch or tag (default: master).")
    build_parser.add_argument(
        "output_dir", nargs="?", default="artifacts", help="Output root (default: artifacts)."
    )
    build_parser.add_argument("target_arch", nargs="?", default=None, help="Target architecture label.")
    build_parser.add_argument("target_platform", nargs="?", default=None, help="Target platform label.")
    build_parser.add_argument(
        "cross_compile",
        nargs="?",
        default="false",
        help="Pass 'true' to tolerate validation failures when cross-compiling.",
    )

    plan_parser = subparsers.add_parser(
        "plan",
        help="Print the build matrix for a language and platform selection.",
    )
    _add_verbose_option(plan_parser, suppress_default=True)
    _add_log_file_option(plan_parser, suppress_default=True)
    _add_config_option(plan_parser, suppress_default=True)
    plan_parser.add_argument("--language", default=ALL, help="'all' or a language name.")
    plan_parser.add_argument(
        "--platforms",
        default=ALL,
        choices=list(PLATFORM_SELECTORS),
        help="Platform selection (default: all).",
    )
    plan_parser.add_argument(
        "--github-output",
        action="store_true",
        help="Also append matrix=<json> to $GITHUB_OUTPUT.",
    )

    job_parser = subparsers.add_parser(
        "job",
        help="Run one matrix cell: build, then sign on macOS.",
    )
    _add_verbose_option(job_parser, suppress_default=True)
    _add_log_file_option(job_parser, suppress_default=True)
    _add_config_option(job_parser, suppress_default=True)
    job_parser.add_argument("--language", required=True)
    job_parser.add_argument("--os", required=True, dest="runner_os")
    job_parser.add_argument("--arch", required=True)
    job_parser.add_argument("--platform", required=True)
    job_parser.add_argument("--cross-compile", action="store_true")
    job_parser.add_argument("--qemu-arch", default=None)
    job_parser.add_argument("--output-dir", default=None)

    sign_parser = subparsers.add_parser(
        "sign",
        help="Sign, verify and notarize every dylib under the artifacts tree.",
    )
    _add_verbose_option(sign_parser, suppress_default=True)
    _add_log_file_option(sign_parser, suppress_default=True)
    _add_config_option(sign_parser, suppress_default=True)
    sign_parser.add_argument("--language", required=True)
    sign_parser.add_argument("--platform", default="darwin")
    sign_parser.add_argument("--arch", required=True)
    sign_parser.add_argument("--root", default="artifacts")

    upload_parser = subparsers.add_parser(
        "upload",
        help="Upload built parsers to S3.",
    )
    _add_verbose_option(upload_parser, suppress_default=True)
    _add_log_file_option(upload_parser, suppress_default=True)
    _add_config_option(upload_parser, suppress_default=True)
    upload_parser.add_argument("--root", default="artifacts-download")
    upload_parser.add_argument("--bucket", default=None)

    summary_parser = subparsers.add_parser(
        "summary",
        help="Render a Markdown summary of built parsers.",
    )
    _add_verbose_option(summary_parser, suppress_default=True)
    _add_log_file_option(summary_parser, suppress_default=True)
    _add_config_option(summary_parser, suppress_default=True)
    summary_parser.add_argument("--language", default=ALL)
    summary_parser.add_argument("--root", default="artifacts-download")
    summary_parser.add_argument("--bucket", default=None)

    serve_parser = subparsers.add_parser(
        "serve",
        help="Serve the catalog and matrix planner over HTTP.",
    )
    _add_verbose_option(serve_parser, suppress_default=True)
    _add_log_file_option(serve_parser, suppress_default=True)
    _add_config_option(serve_parser, suppress_default=True)
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8000)

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entrypoint for parserbuild commands."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    configure_logging(verbose=bool(args.verbose), log_file=args.log_file)

    try:
        settings = load_settings(args.config)
    except ConfigError as exc:
        parser.exit(1, f"{exc}\n")

    try:
        if args.command == "build":
            builder = ParserBuilder(abi_version=settings.abi_version)
            result = builder.build(
                args.language,
                args.repo_url,
                args.ref,
                args.output_dir,
                arch=args.target_arch or None,
                platform=args.target_platform or None,
                cross_compile=_as_flag(args.cross_compile),
            )
            for output in result.outputs:
                print(_relativize(output.path))
        elif args.command == "plan":
            catalog = load_catalog(settings.catalog) if args.language == ALL else {}
            cells = plan_matrix(args.language, catalog, args.platforms)
            if args.github_output:
                write_github_output(cells)
            print(matrix_to_json(cells))
        elif args.command == "job":
            cell = MatrixCell(
                language=args.language,
                target=TargetDescriptor(
                    os=args.runner_os,
                    arch=args.arch,
                    platform=args.platform,
                    cross_compile=bool(args.cross_compile),
                    qemu_arch=args.qemu_arch or None,
                ),
            )
            outcome = JobRunner(settings).run(cell, output_dir=args.output_dir)
            if outcome.result is not None:
                for output in outcome.result.outputs:
                    print(_relativize(output.path))
        elif args.command == "sign":
            signer = MacSigner(
                SigningCredentials.from_env(),
                sign_timeout=settings.signing.sign_timeout,
                notarize_timeout=settings.signing.notarize_timeout,
            )
            outcome = signer.run(
                Path(args.root),
                language=args.language,
                platform=args.platform,
                arch=args.arch,
            )
            if outcome.archive is not None:
                print(_relativize(outcome.archive))
        elif args.command == "upload":
            if args.bucket:
                settings.storage.bucket = args.bucket
            report = Uploader(settings.storage).upload_tree(Path(args.root))
            if not report.ok:
                parser.exit(1, f"{len(report.failed)} upload(s) failed\n")
        elif args.command == "summary":
            text = render_summary(
                Path(args.root),
                args.language,
                args.bucket or settings.storage.bucket,
                settings.storage.prefix,
            )
            if not write_summary(text):
                print(text, end="")
        elif args.command == "serve":
            from .service import run_service

            run_service(host=args.host, port=args.port)
        else:  # pragma: no cover - argparse enforces choices
            parser.exit(1, "Unknown command\n")
    except (BuildError, SigningError, ConfigError, UnsupportedPlatformError) as exc:
        parser.exit(1, f"parserbuild {args.command} failed: {exc}\n")
    except ValueError as exc:
        parser.exit(1, f"{exc}\n")


def _as_flag(value: str | None) -> bool:
    return (value or "").strip().lower() == "true"


def _relativize(path: Path) -> str:
    try:
        return str(path.relative_to(Path.cwd()))
    except ValueError:
        return str(path)


if __name__ == "__main__":
    main(sys.argv[1:])
