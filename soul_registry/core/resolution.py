"""
Resolution service - lookup, alternative discovery, verification and recommendation.
The store is canonical; mappings are derived on read and cached in a bounded LRU.

Full scans (find_alternatives, search, get_stats) are O(N) in store size and
refuse to run past MAX_SCAN_RECORDS.
"""

import math
from collections import deque
from dataclasses import replace
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

from .cache import ResolveCache
from .config import (
    RegistrySettings,
    get_registry_settings,
    SOURCE_NAMESPACE,
    TARGET_NAMESPACE,
    PAIRING_NAMESPACE,
)
from .errors import DimensionMismatch, RecordConflict, ScanLimitExceeded
from .schema import (
    Alternative,
    DependencyGraph,
    GraphEdge,
    GraphNode,
    Mapping,
    MirrorConfig,
    NotFound,
    PackageRecord,
    PairingEntry,
    Recommendation,
    Recommendations,
    RegistryStats,
    VerificationResult,
    compute_phash,
    utcnow,
)
from .similarity import similarity, similarity_or_zero
from ..store.index import IRecordStore
from ..util.logging import logger

Resolution = Union[Mapping, NotFound]


def source_key(name: str) -> str:
    return f"{SOURCE_NAMESPACE}:{name}"


def target_key(name: str) -> str:
    return f"{TARGET_NAMESPACE}:{name}"


def pairing_key(phash: str) -> str:
    return f"{PAIRING_NAMESPACE}:{phash}"


class ResolutionService:
    """Package-facing registry API over an explicitly supplied record store."""

    def __init__(self, store: IRecordStore, settings: RegistrySettings = None):
        self.store = store
        self.settings = settings or get_registry_settings()
        self.cache = ResolveCache(self.settings.resolve_cache_size)

    # ------------------------------------------------------------------
    # Store access
    # ------------------------------------------------------------------

    def _load_record(self, key: str) -> Optional[PackageRecord]:
        value = self.store.get(key)
        return PackageRecord.from_dict(value) if value is not None else None

    def _load_pairing(self, phash: str) -> Optional[PairingEntry]:
        if not phash:
            return None
        value = self.store.get(pairing_key(phash))
        return PairingEntry.from_dict(value) if value is not None else None

    def _counterpart(self, record: PackageRecord) -> Optional[PackageRecord]:
        pairing = self._load_pairing(record.phash)
        if pairing is None:
            return None

        if record.key == pairing.source_key:
            other_key = pairing.target_key
        elif record.key == pairing.target_key:
            other_key = pairing.source_key
        else:
            return None

        if not other_key:
            return None
        other = self._load_record(other_key)
        # A counterpart re-registered under another pairing no longer belongs to this one
        if other is None or other.phash != record.phash:
            return None
        return other

    def _check_scan_size(self, operation: str) -> None:
        total = self.store.count()
        if total > self.settings.max_scan_records:
            logger.warning(f"Refusing {operation}: store holds {total} records (limit {self.settings.max_scan_records})")
            raise ScanLimitExceeded(self.settings.max_scan_records)

    def _iter_package_records(self) -> Iterator[PackageRecord]:
        for prefix in (f"{SOURCE_NAMESPACE}:", f"{TARGET_NAMESPACE}:"):
            for _, value in self.store.iterate(prefix):
                yield PackageRecord.from_dict(value)

    def _validate_record(self, record: PackageRecord, namespace: str) -> None:
        if record.registry != namespace:
            raise ValueError(f"Record '{record.name}' must belong to the '{namespace}' registry, got '{record.registry}'")
        if not record.name or not record.name.strip():
            raise ValueError("Record name cannot be empty")
        if len(record.feature_vector) != self.settings.feature_dimension:
            raise DimensionMismatch(len(record.feature_vector), self.settings.feature_dimension)
        if not all(math.isfinite(x) for x in record.feature_vector):
            raise ValueError(f"Feature vector for '{record.name}' contains non-finite values")

    # ------------------------------------------------------------------
    # Registration and purge
    # ------------------------------------------------------------------

    def register(self, source: PackageRecord, target: Optional[PackageRecord] = None,
                 replace_existing: bool = False) -> Mapping:
        """
        Register a source package and, optionally, its target-registry counterpart.

        Both records and the soul:<phash> pairing index are written in one
        put_many call. Re-registering identical features under the same pairing
        is a no-op (created_at and verified survive); omitting target keeps the
        current counterpart.

        Without replace_existing, RecordConflict is raised when a record's
        features differ, when it already belongs to another pairing, or when
        the source is already paired with a different target. With it, the
        affected records are recreated unverified and a displaced target is
        moved to a pairing of its own so purge can still reach it.
        """
        self._validate_record(source, SOURCE_NAMESPACE)
        if target is not None:
            self._validate_record(target, TARGET_NAMESPACE)

        phash = compute_phash(source.key, source.feature_vector, source.topology)
        current_target = self._current_target(phash)

        displaced = None
        if target is not None and current_target is not None and current_target.key != target.key:
            if not replace_existing:
                raise RecordConflict(source.key, f"is already paired with '{current_target.key}'")
            displaced = current_target

        stored = []
        stale_pairings = set()
        for record in (source, target):
            if record is None:
                continue
            existing = self._load_record(record.key)
            if existing is None:
                stored.append(self._fresh(record, phash))
                continue

            same_features = existing.same_features(record)
            if same_features and existing.phash == phash and displaced is None:
                stored.append(existing)
                continue
            if not replace_existing:
                if not same_features:
                    raise RecordConflict(record.key)
                if existing.phash and existing.phash != phash:
                    raise RecordConflict(record.key, f"already belongs to pairing {existing.phash}")

            if existing.phash and existing.phash != phash:
                stale_pairings.add(existing.phash)
            # A re-paired record's verification was for the old pair
            stored.append(self._fresh(record, phash))

        new_source = stored[0]
        if target is not None:
            new_target = stored[1]
        elif current_target is not None:
            new_target = current_target
        else:
            new_target = None

        pairing = PairingEntry(phash=phash, source_key=new_source.key,
                               target_key=new_target.key if new_target else None)

        writes = [(r.key, r.to_dict()) for r in stored]
        writes.append((pairing_key(phash), pairing.to_dict()))
        if displaced is not None:
            writes.extend(self._detach(displaced))
        self.store.put_many(writes)

        for old_phash in stale_pairings:
            self._release_pairing(old_phash)

        # A new record can change which candidate key a cached name resolves through
        self.cache.clear()

        score = similarity(new_source, new_target) if new_target is not None else None
        logger.log_registration(phash, new_source.key, new_target.key if new_target else None, score)

        return Mapping(query=new_source.name, source=new_source, target=new_target,
                       similarity_score=score, matched_by=SOURCE_NAMESPACE, matched_key=new_source.key)

    @staticmethod
    def _fresh(record: PackageRecord, phash: str) -> PackageRecord:
        return replace(record, phash=phash, verified=False, created_at=utcnow())

    def _current_target(self, phash: str) -> Optional[PackageRecord]:
        """Target still attached to the pairing stored under phash, if any."""
        pairing = self._load_pairing(phash)
        if pairing is None or not pairing.target_key:
            return None
        record = self._load_record(pairing.target_key)
        if record is None or record.phash != phash:
            return None
        return record

    def _detach(self, record: PackageRecord) -> List[Tuple[str, dict]]:
        """Writes that move record into a pairing of its own, keeping its verified flag."""
        own_phash = compute_phash(record.key, record.feature_vector, record.topology)
        moved = replace(record, phash=own_phash)
        entry = PairingEntry(phash=own_phash, source_key=moved.key, target_key=None)
        logger.log_operation("registry.detach", "success", {"key": moved.key, "phash": own_phash})
        return [(moved.key, moved.to_dict()), (pairing_key(own_phash), entry.to_dict())]

    def _release_pairing(self, phash: str) -> None:
        """Drop a pairing nothing belongs to any more, or unlink a target that moved away."""
        pairing = self._load_pairing(phash)
        if pairing is None:
            return

        remaining = []
        for key in pairing.member_keys:
            record = self._load_record(key)
            if record is not None and record.phash == phash:
                remaining.append(key)

        if not remaining:
            self.store.delete(pairing_key(phash))
        elif pairing.target_key and pairing.target_key not in remaining:
            self.store.put(pairing_key(phash), replace(pairing, target_key=None).to_dict())

    def purge(self, phash: str) -> bool:
        """Administrative removal of a pairing and the records that still belong to it."""
        pairing = self._load_pairing(phash)
        if pairing is None:
            return False

        removed = []
        for key in pairing.member_keys:
            record = self._load_record(key)
            if record is not None and record.phash == phash:
                self.store.delete(key)
                removed.append(key)
        self.store.delete(pairing_key(phash))

        self.cache.invalidate_keys(pairing.member_keys)
        logger.log_purge(phash, removed)
        return True

    # ------------------------------------------------------------------
    # Resolve
    # ------------------------------------------------------------------

    def _candidate_keys(self, name: str) -> List[Tuple[str, str]]:
        candidates = [(source_key(name), SOURCE_NAMESPACE), (target_key(name), TARGET_NAMESPACE)]

        suffix = self.settings.twin_suffix
        if suffix:
            candidates.append((target_key(name + suffix), "convention"))
            if name.endswith(suffix) and len(name) > len(suffix):
                candidates.append((source_key(name[:-len(suffix)]), "convention"))
        return candidates

    def _build_mapping(self, query: str, record: PackageRecord, matched_by: str) -> Mapping:
        counterpart = self._counterpart(record)
        # Strict: a dimension mismatch between paired records propagates
        score = similarity(record, counterpart) if counterpart is not None else None

        if record.registry == TARGET_NAMESPACE and counterpart is not None:
            source, target = counterpart, record
        else:
            source, target = record, counterpart

        return Mapping(query=query, source=source, target=target, similarity_score=score,
                       matched_by=matched_by, matched_key=record.key)

    def resolve(self, name: str, skip_cache: bool = False) -> Resolution:
        """
        Resolve a package name to a Mapping, or NotFound.

        Lookup order: cache, npm:<name>, crate:<name>, then the naming
        convention (crate:<name><suffix>, npm:<name without suffix>). A missing
        package is a NotFound value, never an exception.
        """
        name = (name or "").strip()
        if not name:
            return NotFound(name=name, tried_keys=[])

        if not skip_cache:
            cached = self.cache.get(name)
            if cached is not None:
                logger.log_resolution(name, "cache_hit")
                return cached

        tried = []
        for key, matched_by in self._candidate_keys(name):
            tried.append(key)
            record = self._load_record(key)
            if record is None:
                continue

            mapping = self._build_mapping(name, record, matched_by)
            self.cache.put(name, mapping)
            logger.log_resolution(name, "resolved", {"key": key, "matched_by": matched_by})
            return mapping

        logger.log_resolution(name, "not_found", {"tried": tried})
        return NotFound(name=name, tried_keys=tried)

    # ------------------------------------------------------------------
    # Alternatives and verification
    # ------------------------------------------------------------------

    def find_alternatives(self, name: str, threshold: float = None) -> List[Alternative]:
        """
        Score every stored package record against name and keep those >= threshold.

        Returns the full list sorted by descending score (ties by key). The
        queried record itself is excluded. Records with a mismatched vector
        length are logged and skipped. O(N) in store size.
        """
        if threshold is None:
            threshold = self.settings.resonant_threshold

        resolution = self.resolve(name)
        if isinstance(resolution, NotFound):
            return []

        query = resolution.matched
        self._check_scan_size("find_alternatives")

        alternatives = []
        scanned = 0
        for record in self._iter_package_records():
            if record.key == query.key:
                continue
            scanned += 1
            try:
                score = similarity(query, record)
            except DimensionMismatch as e:
                logger.log_similarity_error(query.key, record.key, str(e))
                continue
            if score >= threshold:
                alternatives.append(Alternative(record=record, score=score))

        alternatives.sort(key=lambda a: (-a.score, a.record.key))
        logger.log_scan("find_alternatives", scanned, len(alternatives), {"name": name, "threshold": threshold})
        return alternatives

    def verify(self, npm_name: str, crate_name: str) -> VerificationResult:
        """
        Verify a source/target pairing. Both records are marked verified only
        when the similarity exceeds the perfect-match threshold; the flag is
        never cleared.
        """
        skey, tkey = source_key(npm_name), target_key(crate_name)
        source = self._load_record(skey)
        target = self._load_record(tkey)

        missing = [key for key, record in ((skey, source), (tkey, target)) if record is None]
        if missing:
            logger.log_resolution(npm_name, "verify_not_found", {"missing": missing})
            return VerificationResult(
                verified=False,
                reason=f"Package not found: {', '.join(missing)}",
                source_key=skey,
                target_key=tkey,
                missing=missing,
            )

        score = similarity(source, target)
        threshold = self.settings.perfect_match_threshold

        if score > threshold:
            updates = [(r.key, r.with_verified().to_dict()) for r in (source, target) if not r.verified]
            if updates:
                # Both flags land in one atomic write
                self.store.put_many(updates)
                self.cache.invalidate_keys([skey, tkey])
            verified = True
            reason = None
        else:
            # One-way flag: a previously verified pair stays verified
            verified = source.verified and target.verified
            reason = f"Similarity {score:.4f} does not exceed {threshold}"

        logger.log_verification(skey, tkey, score, verified)
        return VerificationResult(verified=verified, score=score, reason=reason,
                                  source_key=skey, target_key=tkey)

    # ------------------------------------------------------------------
    # Batch operations
    # ------------------------------------------------------------------

    def recommend(self, names: Sequence[str]) -> Recommendations:
        """
        Classify names into disjoint replace / upgrade / transmute / perfect buckets.

        A per-name dimension mismatch drops that name; only store failures
        abort the batch.
        """
        recommendations = Recommendations()
        seen = set()

        for raw in names:
            name = (raw or "").strip()
            if not name or name in seen:
                continue
            seen.add(name)

            try:
                self._classify(name, recommendations)
            except DimensionMismatch as e:
                logger.log_similarity_error(name, "*", str(e))

        return recommendations

    def _classify(self, name: str, recommendations: Recommendations) -> None:
        s = self.settings
        resolution = self.resolve(name)

        if isinstance(resolution, NotFound):
            recommendations.transmute.append(Recommendation(
                name=name, reason="Not yet mirrored", priority="high"))
            return

        if not resolution.has_twin:
            recommendations.transmute.append(Recommendation(
                name=name, reason="No paired counterpart", priority="medium"))
            return

        score = resolution.similarity_score

        if score < s.parasitic_threshold:
            alternatives = self.find_alternatives(name, s.replace_alternative_threshold)
            recommendations.replace.append(Recommendation(
                name=name, similarity=score, twin=resolution.target.key,
                alternatives=alternatives[:s.max_replace_alternatives]))
        elif score < s.resonant_threshold:
            better = [a for a in self.find_alternatives(name, s.resonant_threshold) if a.score > score]
            if better:
                recommendations.upgrade.append(Recommendation(
                    name=name, similarity=score, twin=resolution.target.key, alternatives=better[:1]))
        elif score >= s.perfect_match_threshold:
            recommendations.perfect.append(Recommendation(
                name=name, similarity=score, twin=resolution.target.key))

    def _node_similarity(self, name: str) -> Tuple[float, bool, Optional[str]]:
        try:
            resolution = self.resolve(name)
        except DimensionMismatch as e:
            logger.log_similarity_error(name, "*", str(e))
            return 0.0, False, None

        if isinstance(resolution, NotFound):
            return 0.0, False, None
        score = resolution.similarity_score if resolution.similarity_score is not None else 0.0
        return score, resolution.has_twin, resolution.phash

    def build_graph(self, root_name: str, dependency_names: Sequence[str],
                    dependency_tree: Dict[str, Sequence[str]] = None) -> DependencyGraph:
        """
        Breadth-first walk over dependency_names (depth 0) and, when given,
        their children from dependency_tree (depth + 1). Each name is visited
        once; nodes at depth > 0 get an edge from the root.
        """
        graph = DependencyGraph(root=root_name)
        tree = dependency_tree or {}
        parasitic = self.settings.parasitic_threshold

        queue = deque((name, 0) for name in dependency_names)
        visited = set()
        total_similarity = 0.0

        while queue:
            name, depth = queue.popleft()
            if name in visited:
                continue
            visited.add(name)

            score, has_twin, phash = self._node_similarity(name)
            node = GraphNode(id=name, depth=depth, similarity=score, has_twin=has_twin,
                             is_parasitic=score < parasitic, phash=phash)
            graph.nodes.append(node)

            graph.stats.total_packages += 1
            if node.has_twin:
                graph.stats.resonant_packages += 1
            if node.is_parasitic:
                graph.stats.parasites += 1
            total_similarity += score

            if depth > 0:
                graph.edges.append(GraphEdge(source=root_name, target=name, depth=depth, similarity=score))

            for child in tree.get(name, []):
                if child not in visited:
                    queue.append((child, depth + 1))

        graph.stats.average_coherence = total_similarity / len(graph.nodes) if graph.nodes else 0.0
        return graph

    # ------------------------------------------------------------------
    # Registry-wide views
    # ------------------------------------------------------------------

    def get_stats(self) -> RegistryStats:
        """Registry-wide counts. Scores here use the permissive zero-on-mismatch policy."""
        self._check_scan_size("get_stats")
        s = self.settings

        records = {r.key: r for r in self._iter_package_records()}
        stats = RegistryStats(cache_size=len(self.cache))
        stats.npm_packages = sum(1 for r in records.values() if r.registry == SOURCE_NAMESPACE)
        stats.crate_packages = sum(1 for r in records.values() if r.registry == TARGET_NAMESPACE)

        for _, value in self.store.iterate(f"{PAIRING_NAMESPACE}:"):
            pairing = PairingEntry.from_dict(value)
            stats.total_souls += 1

            source = records.get(pairing.source_key)
            target = records.get(pairing.target_key) if pairing.target_key else None
            if source is None or target is None:
                continue
            if source.phash != pairing.phash or target.phash != pairing.phash:
                continue

            score = similarity_or_zero(source, target)
            if source.verified and target.verified:
                stats.verified_mappings += 1
            if score >= s.perfect_match_threshold:
                stats.perfect_matches += 1
            if score >= s.resonant_threshold:
                stats.resonant_pairs += 1
            if score < s.parasitic_threshold:
                stats.parasites += 1

        return stats

    def search(self, query: str, limit: int = 10) -> List[Mapping]:
        """Case-insensitive substring search over package names; one mapping per pairing."""
        needle = (query or "").strip().lower()
        if not needle:
            return []
        limit = max(1, min(limit, self.settings.search_limit_max))
        self._check_scan_size("search")

        results = []
        seen_pairs = set()
        scanned = 0
        for record in self._iter_package_records():
            if len(results) >= limit:
                break
            scanned += 1
            if needle not in record.name.lower():
                continue
            try:
                mapping = self._build_mapping(record.name, record, record.registry)
            except DimensionMismatch as e:
                logger.log_similarity_error(record.key, "*", str(e))
                continue

            pair_id = (mapping.source.key, mapping.target.key if mapping.target else None)
            if pair_id in seen_pairs:
                continue
            seen_pairs.add(pair_id)
            results.append(mapping)

        logger.log_scan("search", scanned, len(results), {"query": needle})
        return results

    def generate_mirror_config(self, dependency_names: Iterable[str]) -> MirrorConfig:
        """Switching config for a dependency list: twins, replacements and the transmute backlog."""
        s = self.settings
        config = MirrorConfig()
        seen = set()

        for raw in dependency_names:
            name = (raw or "").strip()
            if not name or name in seen:
                continue
            seen.add(name)

            try:
                resolution = self.resolve(name)
            except DimensionMismatch as e:
                logger.log_similarity_error(name, "*", str(e))
                resolution = NotFound(name=name)

            if isinstance(resolution, Mapping) and resolution.has_twin:
                score = resolution.similarity_score
                if score >= s.parasitic_threshold:
                    config.mappings[name] = {
                        "npm": resolution.source.name,
                        "crate": resolution.target.name,
                        "phash": resolution.phash,
                        "similarity": score,
                        "verified": resolution.verified,
                    }
                    config.stats["mapped"] += 1
                    continue

                alternatives = self.find_alternatives(name, s.replace_alternative_threshold)
                if alternatives:
                    config.parasite_replacements[name] = alternatives[0].record.name
                    config.stats["parasites"] += 1
                    continue

            config.auto_transmute.append(name)
            config.stats["to_transmute"] += 1

        return config
