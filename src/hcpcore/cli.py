"""HCP Core CLI: release and verify signed provenance manifests."""

from __future__ import annotations

import json
import logging
import sys
import traceback
from pathlib import Path

import click

from hcpcore import __version__
from hcpcore.config import CONFIG_DIR_NAME, CONFIG_FILE_NAME, HcpConfig
from hcpcore.fingerprint import default_registry
from hcpcore.fingerprint.python import PythonFingerprinter
from hcpcore.identity import (
    KeyStore,
    Secp256k1Identity,
    generate_private_key,
    load_public_key,
    public_key_bytes,
    public_key_from_hex,
)
from hcpcore.ignore import IgnoreMatcher
from hcpcore.provenance.chain import DirectoryChainResolver, manifest_file_digest, parent_hash_for
from hcpcore.provenance.collaborators import StaticContributions, StaticProofs
from hcpcore.provenance.hashing import DualHasher, digest_tree
from hcpcore.provenance.manifest import Manifest
from hcpcore.provenance.signing import SigningEngine
from hcpcore.provenance.verifier import Tier, VerificationEngine
from hcpcore.security import SecurityLimits


def handle_error(error: Exception, debug: bool) -> None:
    """Handle errors with structured output.

    Args:
        error: The exception that occurred
        debug: Whether to show full traceback
    """
    if debug:
        traceback.print_exc()
    else:
        click.echo(f"Error: {error}", err=True)
    sys.exit(1)


def load_config(ctx: click.Context, **overrides) -> HcpConfig:
    """Resolve configuration for a command, CLI flags winning."""
    return HcpConfig.load(config_path=ctx.obj.get('config_path'), **overrides)


def limits_for(config: HcpConfig) -> SecurityLimits:
    return SecurityLimits(max_file_size=config.max_file_size)


def matcher_for(root: Path, config: HcpConfig) -> IgnoreMatcher:
    """Ignore rules for a tree, always excluding the configured manifest name."""
    return IgnoreMatcher.for_root(root, extra_patterns=[config.manifest_name], ignore_file=config.ignore_file)


def read_passphrase(prompt: str = "Passphrase", confirm: bool = False) -> str:
    return click.prompt(prompt, hide_input=True, confirmation_prompt=confirm, default="", show_default=False)


def display_path(path: Path) -> str:
    """Path relative to the working directory when it lies beneath it."""
    try:
        return str(path.resolve().relative_to(Path.cwd().resolve()))
    except ValueError:
        return str(path)


@click.group()
@click.version_option(version=__version__, prog_name="hcpctl")
@click.option('--config', 'config_path', type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help='Config file (default: ./.hcp/config.yaml, then ~/.hcp/config.yaml)')
@click.option('--debug', is_flag=True, help='Enable debug mode (show full tracebacks)')
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, debug: bool):
    """HCP Core CLI - Signed, content-addressed provenance manifests."""
    ctx.ensure_object(dict)
    ctx.obj['config_path'] = config_path
    ctx.obj['debug'] = debug
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command()
@click.option('--global', '-g', 'global_', is_flag=True, help='Write ~/.hcp/config.yaml instead of ./.hcp/config.yaml')
@click.option('--force', is_flag=True, help='Overwrite an existing config file')
@click.pass_context
def init(ctx: click.Context, global_: bool, force: bool):
    """Write a default configuration file."""
    debug = ctx.obj.get('debug', False)

    try:
        base = Path.home() if global_ else Path.cwd()
        config_path = base / CONFIG_DIR_NAME / CONFIG_FILE_NAME
        if config_path.exists() and not force:
            raise click.ClickException(f"{config_path} already exists (use --force to overwrite)")

        config = HcpConfig()
        config.save(config_path)

        click.echo(f"Initialized HCP configuration at: {config_path}")
        click.echo(f"Identity Key Path: {config.identity_key_path}")
    except click.ClickException:
        raise
    except Exception as e:
        handle_error(e, debug)


@cli.command()
@click.option('--key', '-k', 'key_path', type=click.Path(dir_okay=False, path_type=Path),
              help='Key file to create (default: identity_key_path from config)')
@click.option('--force', is_flag=True, help='Overwrite an existing key file')
@click.pass_context
def keygen(ctx: click.Context, key_path: Path | None, force: bool):
    """Generate a secp256k1 identity and store it encrypted.

    Examples:
      hcpctl keygen
      hcpctl keygen --key ./release.key
    """
    debug = ctx.obj.get('debug', False)

    try:
        config = load_config(ctx, identity_key_path=str(key_path) if key_path else None)
        store = KeyStore(config.key_path)
        if store.exists() and not force:
            raise click.ClickException(
                f"Key file already exists: {store.path} (use --force to overwrite)"
            )

        passphrase = read_passphrase("New passphrase", confirm=True)
        key = generate_private_key()
        store.save(key, passphrase)

        identity = Secp256k1Identity(config.network)
        click.echo(f"Identity written to: {store.path}")
        click.echo(f"Address:    {identity.address_for_key(key)}")
        click.echo(f"Public key: {public_key_bytes(key).hex()}")
    except click.ClickException:
        raise
    except Exception as e:
        handle_error(e, debug)


@cli.command()
@click.option('--key', '-k', 'key_path', type=click.Path(dir_okay=False, path_type=Path),
              help='Encrypted key file')
@click.option('--public-key', help='Compressed public key hex (no passphrase needed)')
@click.option('--network', type=click.Choice(["mainnet", "testnet", "regtest"]), help='Address network')
@click.pass_context
def address(ctx: click.Context, key_path: Path | None, public_key: str | None, network: str | None):
    """Show the address for a key file or a public key."""
    debug = ctx.obj.get('debug', False)

    try:
        config = load_config(
            ctx,
            identity_key_path=str(key_path) if key_path else None,
            network=network,
        )
        identity = Secp256k1Identity(config.network)

        if public_key:
            raw = public_key_from_hex(public_key)
        else:
            key = KeyStore(config.key_path).load(read_passphrase())
            raw = public_key_bytes(key)

        click.echo(f"Address:    {identity.derive_address(raw)}")
        click.echo(f"Public key: {public_key_bytes(load_public_key(raw)).hex()}")
    except Exception as e:
        handle_error(e, debug)


@cli.command()
@click.option('--path', '-p', 'root', default='.', type=click.Path(exists=True, file_okay=False, path_type=Path),
              help='Directory to scan')
@click.option('--workers', '-w', type=int, help='Hashing threads')
@click.option('--json', 'as_json', is_flag=True, help='Print the digest as JSON')
@click.pass_context
def scan(ctx: click.Context, root: Path, workers: int | None, as_json: bool):
    """Scan and hash a directory without signing.

    Prints one line per asset: raw hash, logic hash (or -) and path.
    """
    debug = ctx.obj.get('debug', False)

    try:
        config = load_config(ctx, workers=workers)
        matcher = matcher_for(root, config)
        digest = digest_tree(
            root,
            matcher=matcher,
            hasher=DualHasher(default_registry()),
            limits=limits_for(config),
            workers=config.workers,
        )

        if as_json:
            click.echo(json.dumps(digest.to_dict(), indent=2))
            return

        for asset in digest.assets:
            click.echo(f"{asset.raw_hash}  {asset.logic_hash or '-':<64}  {asset.path}")
        for failure in digest.failures:
            click.echo(f"Skipped {failure.path}: {failure.reason}", err=True)
        click.echo(f"\nTotal Assets: {len(digest.assets)}")
        click.echo(f"Global Content Hash: {digest.content_hash}")
    except Exception as e:
        handle_error(e, debug)


@cli.command()
@click.argument('source', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option('--show-signature', is_flag=True, help='Print the structural signature string too')
@click.pass_context
def fingerprint(ctx: click.Context, source: Path, show_signature: bool):
    """Print the logic fingerprint of a source file."""
    debug = ctx.obj.get('debug', False)

    try:
        fingerprinter = default_registry().for_path(source)
        if fingerprinter is None:
            raise click.ClickException(f"No fingerprinter for {source.suffix or source.name}")

        if show_signature and isinstance(fingerprinter, PythonFingerprinter):
            click.echo(fingerprinter.signature(source))
        click.echo(fingerprinter.fingerprint(source))
    except click.ClickException:
        raise
    except Exception as e:
        handle_error(e, debug)


@cli.command()
@click.option('--path', '-p', 'root', default='.', type=click.Path(exists=True, file_okay=False, path_type=Path),
              help='Directory to release')
@click.option('--key', '-k', 'key_path', type=click.Path(dir_okay=False, path_type=Path),
              help='Encrypted key file (default: identity_key_path from config)')
@click.option('--tag', '-t', help='Write manifest-<tag>.hcp instead of overwriting the manifest')
@click.option('--dry-run', is_flag=True, help='Preview the manifest without signing or writing')
@click.option('--workers', '-w', type=int, help='Hashing threads')
@click.option('--contributions', type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help='JSON map of path -> {commits, aha_score}')
@click.option('--proofs', type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help='JSON map of path -> proof object')
@click.pass_context
def release(
    ctx: click.Context,
    root: Path,
    key_path: Path | None,
    tag: str | None,
    dry_run: bool,
    workers: int | None,
    contributions: Path | None,
    proofs: Path | None,
):
    """Scan, hash and sign a release manifest.

    The new manifest links to the existing one (if any) through
    parent_hash.

    Examples:
      hcpctl release --path ./project
      hcpctl release --path ./project --tag v1.0
      hcpctl release --dry-run
    """
    debug = ctx.obj.get('debug', False)

    try:
        config = load_config(
            ctx,
            identity_key_path=str(key_path) if key_path else None,
            workers=workers,
        )
        root = root.absolute()
        click.echo(f"Target Path: {display_path(root)}")

        matcher = matcher_for(root, config)
        digest = digest_tree(
            root,
            matcher=matcher,
            hasher=DualHasher(default_registry()),
            limits=limits_for(config),
            workers=config.workers,
        )
        click.echo(f"Total Assets: {len(digest.assets)}")
        click.echo(f"Global Content Hash: {digest.content_hash}")
        for failure in digest.failures:
            click.echo(f"  Skipped {failure.path}: {failure.reason}", err=True)

        current = root / config.manifest_name
        out_path = root / f"manifest-{tag.strip().replace(' ', '_')}.hcp" if tag else current
        parent_hash = parent_hash_for(current)
        if parent_hash:
            click.echo(f"Linking to Parent Manifest: {parent_hash[:8]}...")

        if dry_run:
            click.echo("\n[DRY RUN] Manifest Preview:")
            click.echo(f"ContentHash: {digest.content_hash}")
            click.echo(f"ParentHash:  {parent_hash or ''}")
            click.echo(f"Assets:      {len(digest.assets)} files")
            click.echo(f"Output:      {display_path(out_path)}")
            click.echo("No files were written.")
            return

        store = KeyStore(config.key_path)
        if not store.exists():
            raise click.ClickException(
                f"Identity not found at {store.path}. Run 'hcpctl keygen' or check config."
            )
        key = store.load(read_passphrase("Passphrase to sign release"))

        engine = SigningEngine(Secp256k1Identity(config.network))
        builder = engine.builder_for(
            key,
            contributions=StaticContributions.from_json(contributions) if contributions else None,
            proofs=StaticProofs.from_json(proofs) if proofs else None,
        )
        manifest = engine.sign(builder.build(digest, parent_hash=parent_hash), key)
        manifest.write_json(out_path)

        click.echo(f"Author: {manifest.author}")
        click.echo(f"\nRelease Manifest generated: {display_path(out_path)}")
    except click.ClickException:
        raise
    except Exception as e:
        handle_error(e, debug)


@cli.command()
@click.option('--path', '-p', 'root', default='.', type=click.Path(exists=True, file_okay=False, path_type=Path),
              help='Directory to check')
@click.option('--manifest', '-m', 'manifest_path', type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help='Manifest file (default: <path>/manifest.hcp)')
@click.option('--public-key', help='Expected public key hex (default: the manifest\'s own)')
@click.option('--workers', '-w', type=int, help='Hashing threads')
@click.option('--out', '-o', type=click.Path(path_type=Path), help='Directory for JSON/Markdown reports')
@click.pass_context
def verify(
    ctx: click.Context,
    root: Path,
    manifest_path: Path | None,
    public_key: str | None,
    workers: int | None,
    out: Path | None,
):
    """Verify a manifest's authorship and the directory's content.

    Exits with status 1 unless the manifest is valid (STRICT_OK or
    FUZZY_OK with a good signature).

    Examples:
      hcpctl verify --path ./project
      hcpctl verify --manifest ./project/manifest-v1.0.hcp --out ./report
    """
    debug = ctx.obj.get('debug', False)

    try:
        config = load_config(ctx, workers=workers)
        manifest_path = manifest_path or root / config.manifest_name
        if not manifest_path.is_file():
            raise click.ClickException(f"Manifest not found: {manifest_path}")

        click.echo(f"Verifying manifest: {display_path(manifest_path)}...")
        engine = VerificationEngine(
            identity=Secp256k1Identity(config.network),
            matcher=matcher_for(root, config),
            hasher=DualHasher(default_registry()),
            limits=limits_for(config),
            workers=config.workers,
        )
        result = engine.verify_file(manifest_path, root=root, public_key=public_key)

        authorship = result.authorship
        content = result.content
        click.echo(f"Author:    {authorship.claimed_author}")
        click.echo(f"Authorship: {authorship.status.value}")
        click.echo(f"Content:    {content.tier.value}")
        if content.tier is Tier.FUZZY_OK:
            click.echo("  Raw hash differs but every logic fingerprint matches (cosmetic change).")
        for item in content.divergences:
            click.echo(f"  ✗ {item.path} ({item.reason.value})")
        for item in content.unchecked_changes:
            click.echo(f"  ~ {item.path} ({item.reason.value}, no logic fingerprint)")
        for error in authorship.errors:
            click.echo(f"  ! {error}")

        if out:
            out.mkdir(parents=True, exist_ok=True)
            result.write_json(out / "verification_report.json")
            result.write_markdown(out / "verification_report.md")
            click.echo("\nVerification reports written to:")
            click.echo(f"  - JSON: {out / 'verification_report.json'}")
            click.echo(f"  - MD:   {out / 'verification_report.md'}")

        if result.valid:
            click.echo("\n✅ Manifest is valid")
        else:
            click.echo("\n❌ Manifest is INVALID", err=True)
            sys.exit(1)
    except click.ClickException:
        raise
    except Exception as e:
        handle_error(e, debug)


@cli.command()
@click.option('--manifest', '-m', 'manifest_path', required=True,
              type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help='Manifest to start from')
@click.option('--search', '-s', 'search_dirs', multiple=True,
              type=click.Path(exists=True, file_okay=False, path_type=Path),
              help='Directories holding ancestor manifests (default: the manifest\'s directory)')
@click.pass_context
def chain(ctx: click.Context, manifest_path: Path, search_dirs: tuple[Path, ...]):
    """Walk a manifest's parent links back through known manifest files."""
    debug = ctx.obj.get('debug', False)

    try:
        config = load_config(ctx)
        limits = limits_for(config)
        manifest = Manifest.from_json(manifest_path, limits)
        resolver = DirectoryChainResolver(search_dirs or [manifest_path.parent], limits=limits)

        click.echo(f"{manifest_file_digest(manifest_path)}  {manifest.timestamp}  {display_path(manifest_path)}")
        last = manifest
        depth = 0
        for digest, ancestor in resolver.walk(manifest):
            depth += 1
            location = resolver.path_for(digest)
            click.echo(f"{digest}  {ancestor.timestamp}  {display_path(location) if location else '?'}")
            last = ancestor

        if last.parent_hash and resolver.path_for(last.parent_hash) is None:
            click.echo(f"(unresolved parent {last.parent_hash})")
        click.echo(f"\nChain depth: {depth}")
    except Exception as e:
        handle_error(e, debug)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
