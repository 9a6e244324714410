"""
Command-line front end for the registry.
Runs the same ResolutionService operations as the HTTP surface against the configured store.
"""

import argparse
import json
import sys
from pathlib import Path
from typing import List

from pydantic import ValidationError

from .api.schemas import RegisterRequest
from .core.config import SOURCE_NAMESPACE, TARGET_NAMESPACE, get_registry_settings, get_store
from .core.errors import RegistryError
from .core.resolution import ResolutionService
from .core.schema import NotFound, PackageRecord, Topology


def _build_service() -> ResolutionService:
    return ResolutionService(get_store(), get_registry_settings())


def _read_dependencies(package_json: str) -> List[str]:
    """dependencies and devDependencies names from a package.json file."""
    data = json.loads(Path(package_json).read_text())
    names = list(data.get("dependencies") or {})
    names += [n for n in (data.get("devDependencies") or {}) if n not in names]
    return names


def _to_record(package, registry: str) -> PackageRecord:
    return PackageRecord(
        name=package.name,
        registry=registry,
        version=package.version,
        feature_vector=list(package.feature_vector),
        topology=Topology(**package.topology.model_dump()),
    )


def _emit(args, payload, lines: List[str]) -> None:
    if args.json:
        print(json.dumps(payload, indent=2, default=str))
    else:
        print("\n".join(lines))


def cmd_resolve(service: ResolutionService, args) -> int:
    resolution = service.resolve(args.package)
    if isinstance(resolution, NotFound):
        _emit(args, resolution.to_dict(), [
            f"Package {args.package} not found",
            f"  Tried: {', '.join(resolution.tried_keys)}",
        ])
        return 1

    score = resolution.similarity_score
    _emit(args, resolution.to_dict(), [
        f"Mapping for {args.package} (matched by {resolution.matched_by})",
        f"  npm:        {resolution.source.name}",
        f"  crate:      {resolution.target.name if resolution.target else 'N/A'}",
        f"  phash:      {resolution.phash}",
        f"  similarity: {score:.3f}" if score is not None else "  similarity: N/A",
        f"  verified:   {'yes' if resolution.verified else 'no'}",
    ])
    return 0


def cmd_alternatives(service: ResolutionService, args) -> int:
    threshold = args.threshold if args.threshold is not None else service.settings.resonant_threshold
    alternatives = service.find_alternatives(args.package, threshold)

    lines = [f"Found {len(alternatives)} alternatives for {args.package} (threshold {threshold})"]
    for i, alt in enumerate(alternatives[:args.limit], 1):
        lines.append(f"  {i}. {alt.record.key}  {alt.score:.3f}")
    _emit(args, [a.to_dict() for a in alternatives], lines)
    return 0


def cmd_verify(service: ResolutionService, args) -> int:
    result = service.verify(args.npm, args.crate)

    if result.missing:
        lines = [f"Cannot verify: missing {', '.join(result.missing)}"]
    elif result.verified:
        lines = [f"Verified {result.source_key} <-> {result.target_key} ({result.score:.3f})"]
    else:
        lines = [f"Not verified: {result.reason}"]
    _emit(args, result.to_dict(), lines)
    return 0 if result.verified else 1


def cmd_analyze(service: ResolutionService, args) -> int:
    recommendations = service.recommend(_read_dependencies(args.package_json))

    lines = []
    for rec in recommendations.replace:
        lines.append(f"replace    {rec.name} ({rec.similarity:.3f})")
        if rec.alternatives:
            lines.append(f"             -> {rec.alternatives[0].record.key}")
    for rec in recommendations.upgrade:
        best = rec.alternatives[0]
        lines.append(f"upgrade    {rec.name} ({rec.similarity:.3f}) -> {best.record.key} ({best.score:.3f})")
    for rec in recommendations.transmute:
        lines.append(f"transmute  {rec.name} - {rec.reason}")
    for rec in recommendations.perfect:
        lines.append(f"perfect    {rec.name} -> {rec.twin} ({rec.similarity:.3f})")

    _emit(args, recommendations.to_dict(), lines or ["No dependencies to analyze"])
    return 0


def cmd_generate(service: ResolutionService, args) -> int:
    config = service.generate_mirror_config(_read_dependencies(args.package_json))

    Path(args.output).write_text(json.dumps(config.to_dict(), indent=2))
    _emit(args, config.to_dict(), [
        f"Configuration saved to {args.output}",
        f"  mapped:       {config.stats['mapped']}",
        f"  to transmute: {config.stats['to_transmute']}",
        f"  parasites:    {config.stats['parasites']}",
    ])
    return 0


def cmd_stats(service: ResolutionService, args) -> int:
    stats = service.get_stats()
    _emit(args, stats.to_dict(), [f"  {name}: {value}" for name, value in stats.to_dict().items()])
    return 0


def cmd_register(service: ResolutionService, args) -> int:
    """Register one {"npm": ..., "crate": ...} document or a list of them."""
    data = json.loads(Path(args.file).read_text())
    entries = data if isinstance(data, list) else [data]

    mappings = []
    for entry in entries:
        request = RegisterRequest.model_validate(entry)
        source = _to_record(request.npm, SOURCE_NAMESPACE)
        target = _to_record(request.crate, TARGET_NAMESPACE) if request.crate else None
        mappings.append(service.register(source, target, replace_existing=request.replace or args.replace))

    _emit(args, [m.to_dict() for m in mappings],
          [f"Registered {m.source.key} -> {m.target.key if m.target else 'unpaired'} ({m.phash})" for m in mappings])
    return 0


def cmd_purge(service: ResolutionService, args) -> int:
    removed = service.purge(args.phash)
    _emit(args, {"success": removed, "phash": args.phash},
          [f"Purged {args.phash}" if removed else f"Pairing not found: {args.phash}"])
    return 0 if removed else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="soul-registry",
        description="Similarity-based npm to crate package resolution",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s resolve lodash                 # Resolve a package to its mapping
  %(prog)s alternatives moment -t 0.6     # Packages scoring >= 0.6 against moment
  %(prog)s verify lodash lodash-rs        # Verify a pairing
  %(prog)s analyze package.json           # Bucket a project's dependencies
  %(prog)s generate package.json -o mirror.json
  %(prog)s register pairs.json            # Register records from a JSON file

Environment variables:
- STORE_PROVIDER=sqlite|memory
- DB_PATH=./data/registry.db (database location)
        """
    )
    parser.add_argument("--json", "-j", action="store_true", help="Output results as JSON")

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("resolve", help="Resolve a package to its mapping")
    p.add_argument("package")
    p.set_defaults(handler=cmd_resolve)

    p = sub.add_parser("alternatives", help="Find similar packages (full scan)")
    p.add_argument("package")
    p.add_argument("--threshold", "-t", type=float, default=None, help="Minimum similarity score")
    p.add_argument("--limit", "-n", type=int, default=10, help="Maximum results to print")
    p.set_defaults(handler=cmd_alternatives)

    p = sub.add_parser("verify", help="Verify an npm/crate pairing")
    p.add_argument("npm")
    p.add_argument("crate")
    p.set_defaults(handler=cmd_verify)

    p = sub.add_parser("analyze", help="Recommendations for a package.json")
    p.add_argument("package_json")
    p.set_defaults(handler=cmd_analyze)

    p = sub.add_parser("generate", help="Write a mirror config for a package.json")
    p.add_argument("package_json")
    p.add_argument("--output", "-o", default="mirror-config.json", help="Output file")
    p.set_defaults(handler=cmd_generate)

    p = sub.add_parser("stats", help="Registry-wide statistics")
    p.set_defaults(handler=cmd_stats)

    p = sub.add_parser("register", help="Register records from a JSON file")
    p.add_argument("file")
    p.add_argument("--replace", action="store_true", help="Replace records whose features changed")
    p.set_defaults(handler=cmd_register)

    p = sub.add_parser("purge", help="Remove a pairing and its records")
    p.add_argument("phash")
    p.set_defaults(handler=cmd_purge)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    try:
        return args.handler(_build_service(), args)
    except (ValidationError, ValueError, OSError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    except RegistryError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
