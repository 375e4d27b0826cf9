"""
Backlink Index Tests

Covers:
- Single and array reference matching (field path variants)
- Exhaustive local scans: exact result sets, listing order, fail-soft
- Remote index lookups: owner filter, path fallback, failure handling
"""

import pytest

from hypercerts.atproto import collections as nsid
from hypercerts.core.backlinks import (
    SingleRef,
    ArrayRef,
    SUBJECT,
    SUBJECTS,
    COLLECTION_ITEMS,
    matches_reference,
    find_referencing_uris,
)
from hypercerts.core.error_handler import BacklinkIndexError, RepositoryError
from hypercerts.core.records import build_strong_ref
from hypercerts.testing.fakes import (
    make_activity, make_measurement, make_attachment, make_collection, OWNER,
)


TARGET = f"at://{OWNER}/{nsid.COLLECTION_ACTIVITY}/3ktarget"
OTHER = f"at://{OWNER}/{nsid.COLLECTION_ACTIVITY}/3kother"


# =============================================================================
# FIELD PATH MATCHING
# =============================================================================

class TestFieldPaths:
    """Match rules for the two reference shapes."""

    def test_single_ref_matches_subject_uri(self):
        """HAPPY PATH: subject.uri equal to the target matches."""
        record = {"subject": build_strong_ref(TARGET, "bafy1")}
        assert SUBJECT.matches(record, TARGET)
        assert not SUBJECT.matches(record, OTHER)

    def test_array_ref_matches_any_element(self):
        """HAPPY PATH: any element of subjects[] can carry the target."""
        record = {"subjects": [build_strong_ref(OTHER, "bafy1"), build_strong_ref(TARGET, "bafy2")]}
        assert SUBJECTS.matches(record, TARGET)
        assert SUBJECTS.matches(record, OTHER)

    def test_array_ref_with_wrapper_field(self):
        """Collection items wrap the reference in itemIdentifier."""
        record = {"items": [{"itemIdentifier": build_strong_ref(TARGET, "bafy1")}]}
        assert COLLECTION_ITEMS.matches(record, TARGET)
        assert not SUBJECTS.matches(record, TARGET)

    def test_single_ref_does_not_match_array_field(self):
        """EDGE: a reference inside subjects[] is invisible to SingleRef("subjects")."""
        record = {"subjects": [build_strong_ref(TARGET, "bafy1")]}
        assert not SingleRef("subjects").matches(record, TARGET)

    def test_array_ref_does_not_match_single_field(self):
        """EDGE: ArrayRef("subject") ignores a plain object."""
        record = {"subject": build_strong_ref(TARGET, "bafy1")}
        assert not ArrayRef("subject").matches(record, TARGET)

    def test_malformed_elements_are_ignored(self):
        """EDGE: strings, None and uri-less objects inside the array do not crash."""
        record = {"subjects": ["at://bogus", None, {"cid": "bafy"}, {"uri": 42}, build_strong_ref(TARGET, "x")]}
        assert SUBJECTS.referenced_uris(record) == [TARGET]

    def test_missing_field(self):
        """EDGE: records without the field never match."""
        assert not SUBJECT.matches({}, TARGET)
        assert not SUBJECTS.matches({"subjects": None}, TARGET)

    def test_exact_string_equality(self):
        """EDGE: no normalization; a trailing slash is a different URI."""
        record = {"subject": build_strong_ref(TARGET + "/", "bafy1")}
        assert not SUBJECT.matches(record, TARGET)

    def test_index_paths(self):
        assert SUBJECT.index_path == ".subject.uri"
        assert SUBJECTS.index_path == ".subjects[].uri"
        assert COLLECTION_ITEMS.index_path == ".items[].itemIdentifier.uri"

    def test_matches_reference_rejects_unknown_variant(self):
        with pytest.raises(TypeError):
            matches_reference("subject", {}, TARGET)


# =============================================================================
# LOCAL EXHAUSTIVE INDEX
# =============================================================================

class TestLocalIndex:
    """Scans of one repository collection."""

    def test_returns_exactly_the_referencing_records(self, repo, local_index):
        """HAPPY PATH: K of N records reference the target, K URIs come back."""
        target = make_activity(repo, "target")
        other = make_activity(repo, "other")
        expected = [
            make_measurement(repo, target, "m1"),
            make_measurement(repo, target, "m2"),
        ]
        make_measurement(repo, other, "m3")
        expected.append(make_measurement(repo, target, "m4"))
        make_measurement(repo, other, "m5")

        found = local_index.find_referencing_uris(OWNER, nsid.COLLECTION_MEASUREMENT, SUBJECT, target)

        assert found == expected
        assert len(set(found)) == len(found)

    def test_array_field_found_only_with_array_path(self, repo, local_index):
        """Round trip: the same strong ref is found through the path that matches its shape."""
        target = make_activity(repo)
        single = make_measurement(repo, target)
        in_array = make_attachment(repo, target)

        assert local_index.find_referencing_uris(OWNER, nsid.COLLECTION_MEASUREMENT, SUBJECT, target) == [single]
        assert local_index.find_referencing_uris(OWNER, nsid.COLLECTION_ATTACHMENT, SUBJECTS, target) == [in_array]
        assert local_index.find_referencing_uris(OWNER, nsid.COLLECTION_ATTACHMENT, SUBJECT, target) == []

    def test_record_repeating_target_counted_once(self, repo, local_index):
        """EDGE: an attachment listing the target twice is one match."""
        target = make_activity(repo)
        uri = make_attachment(repo, target, target)
        assert local_index.find_referencing_uris(OWNER, nsid.COLLECTION_ATTACHMENT, SUBJECTS, target) == [uri]

    def test_listing_failure_is_fail_soft(self, repo):
        """Listing error returns [] rather than raising."""
        target = make_activity(repo)
        make_measurement(repo, target)
        repo.failing_lists.add(nsid.COLLECTION_MEASUREMENT)

        assert find_referencing_uris(repo, OWNER, nsid.COLLECTION_MEASUREMENT, SUBJECT, target) == []

    def test_scan_keeps_failure_visible(self, repo, local_index):
        """The scan result tells a failed listing apart from zero matches."""
        target = make_activity(repo)
        repo.failing_lists.add(nsid.COLLECTION_MEASUREMENT)

        failed = local_index.scan(OWNER, nsid.COLLECTION_MEASUREMENT, SUBJECT, target)
        empty = local_index.scan(OWNER, nsid.COLLECTION_EVALUATION, SUBJECT, target)

        assert failed.failed and len(failed) == 0
        assert not empty.failed and len(empty) == 0

    def test_strict_lookup_propagates(self, repo, local_index):
        repo.failing_lists.add(nsid.COLLECTION_COLLECTION)
        with pytest.raises(RepositoryError):
            local_index.find_referencing_records(OWNER, nsid.COLLECTION_COLLECTION, COLLECTION_ITEMS, TARGET)

    def test_count_references(self, repo, local_index):
        """Per-target counts for list views."""
        a = make_activity(repo, "a")
        b = make_activity(repo, "b")
        make_measurement(repo, a)
        make_measurement(repo, a)
        make_measurement(repo, b)

        counts = local_index.count_references(OWNER, nsid.COLLECTION_MEASUREMENT, SUBJECT)
        assert counts == {a: 2, b: 1}

    def test_count_references_fail_soft(self, repo, local_index):
        repo.failing_lists.add(nsid.COLLECTION_MEASUREMENT)
        assert local_index.count_references(OWNER, nsid.COLLECTION_MEASUREMENT, SUBJECT) == {}


# =============================================================================
# REMOTE INDEX
# =============================================================================

class TestRemoteIndex:
    """Lookups through the link index service."""

    def test_same_result_shape_as_local(self, repo, local_index, remote_index):
        target = make_activity(repo)
        make_measurement(repo, target)
        make_measurement(repo, target)

        local = local_index.find_referencing_uris(OWNER, nsid.COLLECTION_MEASUREMENT, SUBJECT, target)
        remote = remote_index.find_referencing_uris(OWNER, nsid.COLLECTION_MEASUREMENT, SUBJECT, target)
        assert remote == local

    def test_owner_filter(self, repo, remote_index):
        target = make_activity(repo)
        make_measurement(repo, target)

        assert remote_index.find_referencing_uris("did:plc:someoneelse", nsid.COLLECTION_MEASUREMENT,
                                                  SUBJECT, target) == []
        assert len(remote_index.find_referencing_uris(None, nsid.COLLECTION_MEASUREMENT, SUBJECT, target)) == 1

    def test_unreachable_is_fail_soft(self, repo, constellation, remote_index):
        target = make_activity(repo)
        make_measurement(repo, target)
        constellation.unreachable = True

        assert remote_index.find_referencing_uris(OWNER, nsid.COLLECTION_MEASUREMENT, SUBJECT, target) == []
        with pytest.raises(BacklinkIndexError):
            remote_index.find_linking_records(target, nsid.COLLECTION_MEASUREMENT, SUBJECT)

    def test_fallback_when_first_path_errors(self, repo, constellation, remote_index):
        """Attachments: .subjects[].uri failing falls through to .subject.uri."""
        target = make_activity(repo)
        legacy = repo.add(nsid.COLLECTION_ATTACHMENT, {"title": "old", "subject": build_strong_ref(target, "c")})
        constellation.failing_paths.add(SUBJECTS.index_path)

        records = remote_index.find_linking_records_any(target, nsid.COLLECTION_ATTACHMENT, [SUBJECTS, SUBJECT])
        assert [r.uri for r in records] == [legacy]

    def test_fallback_when_first_path_empty(self, repo, constellation, remote_index):
        target = make_activity(repo)
        legacy = repo.add(nsid.COLLECTION_ATTACHMENT, {"title": "old", "subject": build_strong_ref(target, "c")})

        records = remote_index.find_linking_records_any(target, nsid.COLLECTION_ATTACHMENT, [SUBJECTS, SUBJECT])
        assert [r.uri for r in records] == [legacy]
        assert [q[2] for q in constellation.queries] == [".subjects[].uri", ".subject.uri"]

    def test_first_path_hit_skips_fallback(self, repo, constellation, remote_index):
        target = make_activity(repo)
        make_attachment(repo, target)

        records = remote_index.find_linking_records_any(target, nsid.COLLECTION_ATTACHMENT, [SUBJECTS, SUBJECT])
        assert len(records) == 1
        assert len(constellation.queries) == 1

    def test_all_paths_failing_raises(self, repo, constellation, remote_index):
        constellation.unreachable = True
        with pytest.raises(BacklinkIndexError):
            remote_index.find_linking_records_any(TARGET, nsid.COLLECTION_ATTACHMENT, [SUBJECTS, SUBJECT])

    def test_summary_counts(self, repo, remote_index):
        target = make_activity(repo)
        make_measurement(repo, target)
        make_measurement(repo, target)
        make_attachment(repo, target)
        make_collection(repo, target)

        assert remote_index.summary(target) == {
            nsid.COLLECTION_MEASUREMENT: 2,
            nsid.COLLECTION_ATTACHMENT: 1,
            nsid.COLLECTION_COLLECTION: 1,
        }
