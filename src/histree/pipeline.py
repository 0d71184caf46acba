"""Per-commit ingestion: git transitions in, entity-level facts out.

Commits are handled strictly parents-first. For each commit:

  1. diff against the first parent and keep paths with a configured language
  2. derive every touched file in a worker thread (read blobs, validate and
     translate hunks, build old and new forests)
  3. in the main thread, inside one transaction: record the commit, extend
     reachability, carry the parent's presence forward, replace it for the
     touched files, match identities, attribute changes, set readiness flags

A file that cannot be derived structurally degrades to a file-level change;
the path is listed in ``skipped_paths`` and the matching readiness flag stays
false, so a later run retries the commit.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

from histree.config import HistreeConfig
from histree.core.attribution import ChangeAttributor
from histree.core.forest import FILE_KIND, EntityForestBuilder, EntityKey, Forest, ParsedFile
from histree.core.hunks import EditDescriptor, HunkEditTranslator
from histree.core.lines import LineIndex
from histree.core.matcher import EntityMatcher, IdentityTable
from histree.core.reachability import ReachabilityIndex
from histree.db.models import ChangeKind, Commit, Entity, Presence, SkippedPath, SkipStage
from histree.db.repository import Repository
from histree.errors import GraphInvariantViolation, MalformedHunk, OutOfRange, ParseFailure
from histree.git.diff import FileDiff
from histree.git.repo import CommitInfo, GitRepository
from histree.parsing.base import StructuralParser
from histree.parsing.treesitter import TreeSitterParser

logger = logging.getLogger(__name__)

_STATUS_KIND = {"A": ChangeKind.ADDED, "D": ChangeKind.DELETED, "M": ChangeKind.MODIFIED}


@dataclass
class FileOutcome:
    """What a worker derived for one path of one commit."""

    diff: FileDiff
    language: str
    new_content: bytes | None = None  # None when the commit deletes the file
    old: ParsedFile | None = None
    new: ParsedFile | None = None
    change_error: str | None = None
    presence_error: str | None = None

    @property
    def path(self) -> str:
        return self.diff.path


@dataclass
class MineStats:
    commits_seen: int = 0
    commits_ingested: int = 0
    commits_skipped: int = 0
    files_derived: int = 0
    files_degraded: int = 0
    entities_created: int = 0


class ParseCache:
    """Thread-safe LRU of parsed file versions keyed by (path, blob id)."""

    def __init__(self, maxsize: int) -> None:
        self.maxsize = maxsize
        self._items: OrderedDict[tuple[str, str], ParsedFile] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: tuple[str, str]) -> ParsedFile | None:
        with self._lock:
            item = self._items.get(key)
            if item is not None:
                self._items.move_to_end(key)
            return item

    def put(self, key: tuple[str, str], parsed: ParsedFile) -> None:
        with self._lock:
            self._items[key] = parsed
            self._items.move_to_end(key)
            while len(self._items) > self.maxsize:
                self._items.popitem(last=False)


class Miner:
    """Ingest the history of one git repository into a histree database.

    Args:
        git: Repository to read commits, diffs and blobs from.
        repo: Open database repository (schema initialised).
        config: Loaded configuration.
        parser: Structural parser; defaults to tree-sitter with the
            configured capture rules.
    """

    def __init__(
        self,
        git: GitRepository,
        repo: Repository,
        config: HistreeConfig,
        parser: StructuralParser | None = None,
    ) -> None:
        self.git = git
        self.repo = repo
        self.config = config
        self.parser = parser or TreeSitterParser(
            config.query_files(), allow_syntax_errors=config.mining.allow_syntax_errors
        )
        self.builder = EntityForestBuilder(self.parser)
        self.translator = HunkEditTranslator()
        self.attributor = ChangeAttributor()
        self.reachability = ReachabilityIndex(repo)
        self.cache = ParseCache(config.mining.parse_cache_size)
        self._load_identities()

    def _load_identities(self) -> None:
        self.table = IdentityTable(self.repo.list_entities())
        self.matcher = EntityMatcher(self.table)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def mine(
        self,
        refs: Sequence[str] = ("HEAD",),
        on_commit: Callable[[CommitInfo, bool], None] | None = None,
    ) -> MineStats:
        """Ingest every commit reachable from *refs* and record the refs.

        Args:
            refs: Ref names or shas to start from.
            on_commit: Called after each commit with whether it was ingested
                (False when it was already complete).

        Raises:
            GitError: If git plumbing fails.
            GraphInvariantViolation: If the commit graph is inconsistent.
        """
        stats = MineStats()
        commits = self.git.list_commits(refs)
        logger.info("Found %d commits reachable from %s", len(commits), ", ".join(refs))
        for info in commits:
            stats.commits_seen += 1
            ingested = self.ingest_commit(info, stats)
            if ingested:
                stats.commits_ingested += 1
            else:
                stats.commits_skipped += 1
            if on_commit is not None:
                on_commit(info, ingested)

        resolved = self.git.resolve_refs(refs)
        with self.repo.transaction():
            for name, sha in resolved.items():
                commit = self.repo.get_commit_by_sha(sha)
                if commit is not None:
                    self.repo.upsert_ref(name, commit.id)
        return stats

    def ingest_commit(self, info: CommitInfo, stats: MineStats | None = None) -> bool:
        """Derive and persist all facts of one commit.

        Returns:
            False if the commit was already complete and skipped.
        """
        stats = stats if stats is not None else MineStats()
        existing = self.repo.get_commit_by_sha(info.sha)
        if existing is not None and existing.is_complete:
            return False

        parent_ids = []
        for parent_sha in info.parents:
            parent = self.repo.get_commit_by_sha(parent_sha)
            if parent is None:
                raise GraphInvariantViolation(
                    f"parent {parent_sha} of {info.sha} was never ingested"
                )
            parent_ids.append(parent.id)

        first_parent = info.parents[0] if info.parents else None
        diffs = []
        for diff in self.git.diff(first_parent, info.sha):
            language = self._language(diff)
            if language is not None:
                diffs.append((diff, language))
        outcomes = self._derive_all(diffs)

        try:
            with self.repo.transaction():
                if existing is not None:
                    commit_id = existing.id
                    self.repo.clear_commit_facts(commit_id)
                    logger.info("Retrying incomplete commit %s", info.sha[:12])
                else:
                    commit_id = self.repo.add_commit(
                        Commit(
                            sha=info.sha,
                            is_merge=info.is_merge,
                            author_date=info.author_date,
                            commit_date=info.commit_date,
                        ),
                        parent_ids,
                    )
                self.reachability.extend(commit_id, parent_ids)
                created = self._write_facts(commit_id, info, parent_ids, outcomes)
        except BaseException:
            # identities allocated for the rolled-back commit are gone too
            self._load_identities()
            raise

        stats.files_derived += len(outcomes)
        stats.files_degraded += sum(1 for o in outcomes if o.change_error or o.presence_error)
        stats.entities_created += created
        return True

    # ------------------------------------------------------------------
    # Worker side
    # ------------------------------------------------------------------

    def _language(self, diff: FileDiff) -> str | None:
        if diff.binary:
            return None
        if diff.status == "M" and not diff.hunks:
            return None  # mode-only change
        language = self.config.language_for(diff.path)
        if language is None or not self.parser.supports(language):
            return None
        return language

    def _derive_all(self, diffs: list[tuple[FileDiff, str]]) -> list[FileOutcome]:
        if not diffs:
            return []
        workers = min(self.config.mining.workers, len(diffs))
        if workers == 1:
            return [self._derive(d, lang) for d, lang in diffs]
        with ThreadPoolExecutor(max_workers=workers) as pool:
            return list(pool.map(lambda item: self._derive(*item), diffs))

    def _parse(
        self,
        path: str,
        blob_id: str,
        content: bytes,
        language: str,
        previous: ParsedFile | None = None,
        edits: Sequence[EditDescriptor] = (),
    ) -> ParsedFile:
        key = (path, blob_id)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        parsed = self.builder.build(path, content, language, previous, edits)
        self.cache.put(key, parsed)
        return parsed

    def _derive(self, diff: FileDiff, language: str) -> FileOutcome:
        """Derive one file transition. Runs in a worker thread; no DB access."""
        outcome = FileOutcome(diff=diff, language=language)
        old_content = self.git.read_blob(diff.old_blob) if diff.old_blob else b""
        new_content = self.git.read_blob(diff.new_blob) if diff.new_blob else b""

        edits: list[EditDescriptor] | None = None
        try:
            edits = self.translator.translate(diff.hunks, LineIndex(old_content), LineIndex(new_content))
        except (MalformedHunk, OutOfRange) as exc:
            outcome.change_error = f"{type(exc).__name__}: {exc}"

        if diff.old_blob:
            try:
                outcome.old = self._parse(diff.path, diff.old_blob, old_content, language)
            except ParseFailure as exc:
                outcome.change_error = outcome.change_error or f"ParseFailure (parent version): {exc}"

        if diff.new_blob:
            outcome.new_content = new_content
            previous = None
            if self.config.mining.incremental and edits is not None:
                previous = outcome.old
            try:
                outcome.new = self._parse(
                    diff.path, diff.new_blob, new_content, language, previous, edits or ()
                )
            except ParseFailure as exc:
                reason = f"ParseFailure: {exc}"
                outcome.presence_error = reason
                outcome.change_error = outcome.change_error or reason
        return outcome

    # ------------------------------------------------------------------
    # Main-thread side
    # ------------------------------------------------------------------

    def _write_facts(
        self,
        commit_id: int,
        info: CommitInfo,
        parent_ids: list[int],
        outcomes: list[FileOutcome],
    ) -> int:
        """Write presence, changes and flags for one commit. Returns entities created."""
        first_parent = parent_ids[0] if parent_ids else None
        if first_parent is not None:
            self.repo.carry_presence(first_parent, commit_id)
            self.repo.carry_skipped_presence(first_parent, commit_id)

        created_total = 0
        changes = []
        for outcome in outcomes:
            created: list[Entity] = []
            file_key: EntityKey = (None, FILE_KIND, outcome.path)
            file_id = self.table.ensure(file_key, created)
            self.repo.add_entities(created)
            created_total += len(created)

            previous_ids: set[int] = set()
            if first_parent is not None:
                previous_ids = self.repo.present_entity_ids(first_parent, file_id)
            self.repo.delete_file_presence(commit_id, file_id)
            self.repo.delete_skipped(commit_id, outcome.path)

            if outcome.new is not None:
                new_forest = outcome.new.forest
            elif outcome.new_content is not None:
                new_forest = Forest.file_only(outcome.path, outcome.new_content)
            else:
                new_forest = Forest.empty()
            old_forest = outcome.old.forest if outcome.old is not None else Forest.empty()

            match = self.matcher.match(previous_ids, new_forest, extra=old_forest)
            self.repo.add_entities(match.created)
            created_total += len(match.created)

            for key, node in new_forest.by_key().items():
                self.repo.add_presence(
                    Presence(
                        commit_id=commit_id,
                        entity_id=match.ids_by_key[key],
                        body_range=node.body_range,
                        name_range=node.name_range,
                    )
                )

            if outcome.presence_error:
                logger.warning(
                    "%s %s: presence limited to the file entity (%s)",
                    info.sha[:12], outcome.path, outcome.presence_error,
                )
                self.repo.add_skipped(
                    SkippedPath(commit_id, outcome.path, SkipStage.PRESENCE, outcome.presence_error)
                )

            if info.is_merge:
                continue
            if outcome.change_error:
                logger.warning(
                    "%s %s: file-level change only (%s)",
                    info.sha[:12], outcome.path, outcome.change_error,
                )
                self.repo.add_skipped(
                    SkippedPath(commit_id, outcome.path, SkipStage.CHANGE, outcome.change_error)
                )
                changes += self.attributor.file_level(
                    commit_id, file_id, outcome.diff.hunks, _STATUS_KIND[outcome.diff.status]
                )
            else:
                changes += self.attributor.attribute(
                    commit_id, outcome.diff.hunks, old_forest, new_forest, match
                )

        self.repo.add_changes(changes)

        skipped = self.repo.skipped_for_commit(commit_id)
        self.repo.set_flags(
            commit_id,
            change=not any(s.stage is SkipStage.CHANGE for s in skipped),
            presence=not any(s.stage is SkipStage.PRESENCE for s in skipped),
        )
        return created_total
