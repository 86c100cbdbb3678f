"""Command-line interface for Skills Manager."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .config import ConfigStore
from .errors import SkillsManagerError
from .indexer import SkillIndexer
from .linker import LinkEngine
from .platforms import PlatformRegistry
from .repositories import RepositoryManager
from .rules import RuleCatalog

app = typer.Typer(
    name="skills-manager",
    help="Link skill repositories and rules into AI agent platforms",
    add_completion=False,
)

platform_app = typer.Typer(help="Manage target platforms")
repo_app = typer.Typer(help="Manage skill repositories")
skill_app = typer.Typer(help="List and link skills")
rule_app = typer.Typer(help="Manage and deploy rules")
app.add_typer(platform_app, name="platform")
app.add_typer(repo_app, name="repo")
app.add_typer(skill_app, name="skill")
app.add_typer(rule_app, name="rule")

console = Console()


@dataclass
class Services:
    """Components wired to one shared ConfigStore."""

    store: ConfigStore
    platforms: PlatformRegistry
    repositories: RepositoryManager
    indexer: SkillIndexer
    rules: RuleCatalog
    linker: LinkEngine

    @classmethod
    def build(cls, config_path: Optional[Path] = None) -> "Services":
        store = ConfigStore(config_path)
        platforms = PlatformRegistry(store)
        repositories = RepositoryManager(store)
        indexer = SkillIndexer(store)
        rules = RuleCatalog(store)
        linker = LinkEngine(platforms, repositories, indexer, rules)
        return cls(store, platforms, repositories, indexer, rules, linker)


_state: dict = {"config_path": None}


def services() -> Services:
    """Build the services for one command; the caller must close the store."""
    return Services.build(_state["config_path"])


def fail(message: str) -> None:
    console.print(f"✗ {message}", style="red")
    raise typer.Exit(1)


@app.callback()
def main(
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        envvar="SKILLS_MANAGER_CONFIG",
        help="System config file (defaults to the user config directory)",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
) -> None:
    """Link skill repositories and rules into AI agent platforms."""
    _state["config_path"] = config
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


@app.command()
def init(
    base_dir: Path = typer.Argument(..., help="Directory holding repositories, rules and user config"),
) -> None:
    """Set the base directory."""
    svc = services()
    try:
        base_dir = base_dir.expanduser().resolve()
        base_dir.mkdir(parents=True, exist_ok=True)
        svc.store.set_system_config({"base_dir": str(base_dir)})
        console.print(f"✓ Base directory set to {base_dir}", style="green")
        console.print(f"  System config: {svc.store.system_config_path}", style="dim")
    except (SkillsManagerError, OSError) as e:
        fail(str(e))
    finally:
        svc.store.close()


# -- platforms ---------------------------------------------------------


@platform_app.command("list")
def platform_list() -> None:
    """List configured platforms."""
    svc = services()
    try:
        platforms = svc.platforms.list()
        if not platforms:
            console.print("No platforms configured yet.", style="yellow")
            console.print("  Use 'skills-manager platform add' or 'platform add-preset'", style="dim")
            return

        table = Table(show_header=True, header_style="bold")
        table.add_column("ID", style="cyan")
        table.add_column("Name")
        table.add_column("Skills Dir", style="green")
        table.add_column("Rules File", style="blue")
        table.add_column("Skills", justify="right")
        table.add_column("Rules", justify="right")

        for p in platforms:
            table.add_row(
                p.id,
                p.name if p.enabled else f"{p.name} (disabled)",
                p.skills_dir,
                p.rules_file,
                str(len(p.linked_skills)),
                str(len(p.linked_rules)),
            )
        console.print(table)
    finally:
        svc.store.close()


@platform_app.command("presets")
def platform_presets() -> None:
    """List available platform presets."""
    svc = services()
    try:
        for preset in svc.store.get_presets():
            console.print(f"  • {preset.name}", style="green bold")
            if preset.description:
                console.print(f"    {preset.description}", style="dim")
            console.print(f"    skills: {preset.skills_dir}", style="dim")
            console.print(f"    rules:  {preset.rules_file}", style="dim")
    finally:
        svc.store.close()


@platform_app.command("add")
def platform_add(
    name: str = typer.Argument(..., help="Display name; the id is derived from it"),
    skills_dir: str = typer.Option("", "--skills-dir", "-s", help="Directory to link skills into"),
    rules_file: str = typer.Option("", "--rules-file", "-r", help="File to deploy rules into"),
) -> None:
    """Add a platform. Paths may use ${HOME} and similar variables."""
    svc = services()
    try:
        platform = svc.platforms.create(
            {"name": name, "skills_dir": skills_dir, "rules_file": rules_file}
        )
        console.print(f"✓ Added platform {platform.id}", style="green")
    except (SkillsManagerError, ValueError) as e:
        fail(str(e))
    finally:
        svc.store.close()


@platform_app.command("add-preset")
def platform_add_preset(
    name: str = typer.Argument(..., help="Preset name (see 'platform presets')"),
) -> None:
    """Add a platform from a preset."""
    svc = services()
    try:
        preset = next(
            (p for p in svc.store.get_presets() if p.name.lower() == name.lower()), None
        )
        if preset is None:
            fail(f"Unknown preset: {name}")
        platform = svc.platforms.create_from_preset(preset)
        console.print(f"✓ Added platform {platform.id}", style="green")
    except (SkillsManagerError, ValueError) as e:
        fail(str(e))
    finally:
        svc.store.close()


@platform_app.command("remove")
def platform_remove(
    platform_id: str = typer.Argument(..., help="Platform id"),
) -> None:
    """Remove a platform. Links already created are left in place."""
    svc = services()
    try:
        svc.platforms.delete(platform_id)
        console.print(f"✓ Removed platform {platform_id}", style="green")
    finally:
        svc.store.close()


# -- repositories ------------------------------------------------------


@repo_app.command("list")
def repo_list() -> None:
    """List skill repositories."""
    svc = services()
    try:
        repos = svc.repositories.list()
        if not repos:
            console.print("No repositories added yet.", style="yellow")
            return

        table = Table(show_header=True, header_style="bold")
        table.add_column("ID", style="cyan")
        table.add_column("URL", style="green")
        table.add_column("Updated", style="yellow")
        table.add_column("Status")

        for repo in repos:
            status = repo.update_status.value if repo.update_status else "-"
            if repo.behind_count:
                status = f"{status} ({repo.behind_count})"
            if repo.check_error:
                status = f"{status}: {repo.check_error}"
            table.add_row(
                repo.id,
                repo.url,
                repo.last_updated.strftime("%Y-%m-%d %H:%M:%S"),
                status,
            )
        console.print(table)
    finally:
        svc.store.close()


@repo_app.command("add")
def repo_add(
    url: str = typer.Argument(..., help="Clone URL or 'owner/repo' on GitHub"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show git progress"),
) -> None:
    """Clone a skill repository."""
    svc = services()
    try:
        if verbose:
            svc.repositories.add_observer(lambda line: console.print(f"  {line}", style="dim"))
        console.print(f"Cloning {svc.repositories.normalize_url(url)}...", style="cyan")
        repo = svc.repositories.clone(url)
        skills = svc.indexer.scan_skills(Path(repo.local_path), repo.id)
        console.print(f"✓ Added {repo.id} ({len(skills)} skills)", style="green")
    except (SkillsManagerError, ValueError) as e:
        fail(str(e))
    finally:
        svc.store.close()


@repo_app.command("pull")
def repo_pull(
    repo_id: str = typer.Argument(..., help="Repository id"),
) -> None:
    """Pull the latest changes of a repository."""
    svc = services()
    try:
        svc.repositories.pull(repo_id)
        console.print(f"✓ Updated {repo_id}", style="green")
    except SkillsManagerError as e:
        fail(str(e))
    finally:
        svc.store.close()


@repo_app.command("check")
def repo_check(
    repo_id: Optional[str] = typer.Argument(None, help="Repository id. Omit to check all."),
) -> None:
    """Check repositories for upstream changes."""
    svc = services()
    try:
        if repo_id:
            results = [svc.repositories.check_updates(repo_id)]
        else:
            results = svc.repositories.check_all_updates()

        for result in results:
            if result.error:
                console.print(f"✗ {result.repo_id}: {result.error}", style="red")
            elif result.has_updates:
                console.print(
                    f"  {result.repo_id}: {result.behind_count} commit(s) behind", style="yellow"
                )
            else:
                console.print(f"✓ {result.repo_id} is up to date", style="green")
    except SkillsManagerError as e:
        fail(str(e))
    finally:
        svc.store.close()


@repo_app.command("remove")
def repo_remove(
    repo_id: str = typer.Argument(..., help="Repository id"),
) -> None:
    """Delete a repository and its working tree."""
    svc = services()
    try:
        svc.repositories.delete(repo_id)
        console.print(f"✓ Removed {repo_id}", style="green")
    except SkillsManagerError as e:
        fail(str(e))
    finally:
        svc.store.close()


# -- skills ------------------------------------------------------------


@skill_app.command("list")
def skill_list() -> None:
    """List skills found in all repositories."""
    svc = services()
    try:
        skills = svc.indexer.list_all()
        if not skills:
            console.print("No skills found.", style="yellow")
            return

        table = Table(show_header=True, header_style="bold")
        table.add_column("Skill", style="cyan")
        table.add_column("Description")
        table.add_column("Platforms", style="green")

        for skill in skills:
            table.add_row(skill.id, skill.description, ", ".join(skill.linked_platforms))
        console.print(table)
    finally:
        svc.store.close()


@skill_app.command("link")
def skill_link(
    skill_id: str = typer.Argument(..., help="Skill id ({repoId}/{path})"),
    platform_id: str = typer.Argument(..., help="Platform id"),
) -> None:
    """Link a skill into a platform."""
    svc = services()
    try:
        link_path = svc.linker.link(skill_id, platform_id)
        console.print(f"✓ Linked {skill_id} at {link_path}", style="green")
    except SkillsManagerError as e:
        fail(str(e))
    finally:
        svc.store.close()


@skill_app.command("unlink")
def skill_unlink(
    skill_id: str = typer.Argument(..., help="Skill id"),
    platform_id: str = typer.Argument(..., help="Platform id"),
) -> None:
    """Remove a skill from a platform."""
    svc = services()
    try:
        svc.linker.unlink(skill_id, platform_id)
        console.print(f"✓ Unlinked {skill_id} from {platform_id}", style="green")
    except SkillsManagerError as e:
        fail(str(e))
    finally:
        svc.store.close()


# -- rules -------------------------------------------------------------


@rule_app.command("list")
def rule_list() -> None:
    """List rules."""
    svc = services()
    try:
        rules = svc.rules.list()
        if not rules:
            console.print("No rules yet.", style="yellow")
            return

        table = Table(show_header=True, header_style="bold")
        table.add_column("ID", style="cyan")
        table.add_column("Name")
        table.add_column("Description")
        table.add_column("Platforms", style="green")

        for rule in rules:
            table.add_row(rule.id, rule.name, rule.description, ", ".join(rule.linked_platforms))
        console.print(table)
    finally:
        svc.store.close()


@rule_app.command("add")
def rule_add(
    name: str = typer.Argument(..., help="Rule name; the id is derived from it"),
    description: str = typer.Option("", "--description", "-d", help="Short description"),
    from_file: Optional[Path] = typer.Option(
        None, "--file", "-f", exists=True, dir_okay=False, help="Read rule text from a file"
    ),
) -> None:
    """Create a rule."""
    svc = services()
    try:
        content = from_file.read_text(encoding="utf-8") if from_file else ""
        rule = svc.rules.create(name, description, content)
        console.print(f"✓ Created rule {rule.id} at {rule.local_path}", style="green")
    except (SkillsManagerError, ValueError) as e:
        fail(str(e))
    finally:
        svc.store.close()


@rule_app.command("show")
def rule_show(
    rule_id: str = typer.Argument(..., help="Rule id"),
) -> None:
    """Print a rule's text."""
    svc = services()
    try:
        console.print(svc.rules.get_content(rule_id), markup=False, highlight=False)
    except SkillsManagerError as e:
        fail(str(e))
    finally:
        svc.store.close()


@rule_app.command("remove")
def rule_remove(
    rule_id: str = typer.Argument(..., help="Rule id"),
) -> None:
    """Delete a rule that is not deployed anywhere."""
    svc = services()
    try:
        svc.rules.delete(rule_id)
        console.print(f"✓ Removed rule {rule_id}", style="green")
    except SkillsManagerError as e:
        fail(str(e))
    finally:
        svc.store.close()


@rule_app.command("deploy")
def rule_deploy(
    rule_id: str = typer.Argument(..., help="Rule id"),
    platform_id: str = typer.Argument(..., help="Platform id"),
) -> None:
    """Deploy a rule into a platform's rules file."""
    svc = services()
    try:
        svc.linker.deploy(rule_id, platform_id)
        console.print(f"✓ Deployed {rule_id} to {platform_id}", style="green")
    except SkillsManagerError as e:
        fail(str(e))
    finally:
        svc.store.close()


@rule_app.command("undeploy")
def rule_undeploy(
    rule_id: str = typer.Argument(..., help="Rule id"),
    platform_id: str = typer.Argument(..., help="Platform id"),
) -> None:
    """Remove a rule from a platform's rules file."""
    svc = services()
    try:
        svc.linker.undeploy(rule_id, platform_id)
        console.print(f"✓ Undeployed {rule_id} from {platform_id}", style="green")
    except SkillsManagerError as e:
        fail(str(e))
    finally:
        svc.store.close()


@rule_app.command("status")
def rule_status(
    rule_id: str = typer.Argument(..., help="Rule id"),
    platform_id: str = typer.Argument(..., help="Platform id"),
) -> None:
    """Show whether a rule is present in a platform's rules file."""
    svc = services()
    try:
        status = svc.linker.check_file_status(platform_id, rule_id)
        console.print(f"{rule_id} on {platform_id}: {status.value}")
    finally:
        svc.store.close()


@rule_app.command("sync")
def rule_sync(
    platform_id: str = typer.Argument(..., help="Platform id"),
) -> None:
    """Rewrite every rule deployed to a platform with its current text."""
    svc = services()
    try:
        deployed = svc.linker.sync_rules(platform_id)
        console.print(f"✓ Synced {len(deployed)} rule(s) to {platform_id}", style="green")
    except SkillsManagerError as e:
        fail(str(e))
    finally:
        svc.store.close()


if __name__ == "__main__":
    app()
