"""Tests for message fingerprinting."""

import pytest

from chat_siphon.history.fingerprint import (
    build_fingerprint,
    build_pos_hash,
    fingerprint_message,
    hash_payload,
    is_valid_for_history,
    matches_sender,
    normalize_for_hash,
    row_key,
)
from chat_siphon.models import Bounds, MessageType, RawMessage


class TestNormalizeForHash:
    """Tests for normalize_for_hash function."""

    def test_none_and_blank(self) -> None:
        """Should map missing and blank values to empty string."""
        assert normalize_for_hash(None) == ""
        assert normalize_for_hash("   \n\t") == ""

    def test_trims_lowercases_and_collapses(self) -> None:
        """Should trim, lowercase and collapse whitespace runs."""
        assert normalize_for_hash("  Hello   World\n\tAgain ") == "hello world again"

    def test_locale_invariant_lowercase(self) -> None:
        """Should lowercase without depending on locale."""
        assert normalize_for_hash("STRASSE") == normalize_for_hash("strasse")
        assert normalize_for_hash("你好 ABC") == "你好 abc"


class TestHashPayload:
    """Tests for hash_payload function."""

    def test_deterministic_sha256(self) -> None:
        """Should return a stable 64-char hex digest."""
        digest = hash_payload(["in", "text", "hi"])
        assert digest == hash_payload(["in", "text", "hi"])
        assert len(digest) == 64

    def test_separator_matters(self) -> None:
        """Different field splits should hash differently."""
        assert hash_payload(["a", "bc"]) != hash_payload(["ab", "c"])


class TestIsValidForHistory:
    """Tests for is_valid_for_history function."""

    def test_incoming_text_is_valid(self) -> None:
        """Test that incoming text rows are valid."""
        assert is_valid_for_history(RawMessage(incoming=True, text="hello")) is True

    def test_description_only_is_valid(self) -> None:
        """Test that a description alone is enough."""
        message = RawMessage(incoming=True, type=MessageType.IMAGE, description="[Photo]")
        assert is_valid_for_history(message) is True

    def test_outgoing_is_invalid(self) -> None:
        """Test that outgoing rows are invalid."""
        assert is_valid_for_history(RawMessage(incoming=False, text="hello")) is False

    def test_system_is_invalid(self) -> None:
        """Test that system rows are invalid."""
        message = RawMessage(incoming=True, type=MessageType.SYSTEM, text="Alice joined")
        assert is_valid_for_history(message) is False

    def test_blank_content_is_invalid(self) -> None:
        """Test that blank or placeholder content is invalid."""
        assert is_valid_for_history(RawMessage(incoming=True)) is False
        assert is_valid_for_history(RawMessage(incoming=True, text="  ", description="")) is False

    def test_none_placeholder_is_blank(self) -> None:
        """The "none" placeholder should count as blank content."""
        assert is_valid_for_history(RawMessage(incoming=True, text="None", description="none")) is False
        assert is_valid_for_history(RawMessage(incoming=True, text="NONE")) is False

    def test_placeholder_with_real_content_is_valid(self) -> None:
        """Test that one real field outweighs a placeholder."""
        message = RawMessage(incoming=True, text="hi there", description="none")
        assert is_valid_for_history(message) is True


class TestBuildPosHash:
    """Tests for build_pos_hash function."""

    def test_missing_or_empty_bounds(self) -> None:
        """Test that missing or empty bounds give no position key."""
        assert build_pos_hash(None) == ""
        assert build_pos_hash(Bounds(10, 10, 10, 50)) == ""

    def test_quantizes_center_and_size(self) -> None:
        """Test quantizing center and size."""
        # center (120, 240), size 96x48 at step 24
        assert build_pos_hash(Bounds(72, 216, 168, 264), step=24) == "5,10,4,2"

    def test_small_relayout_keeps_key(self) -> None:
        """A shift of a few pixels should not change the key."""
        original = Bounds(100, 400, 500, 480)
        shifted = Bounds(102, 401, 502, 481)
        assert build_pos_hash(original) == build_pos_hash(shifted)

    @pytest.mark.parametrize("step", [8, 16, 24, 32, 48])
    def test_distinct_rows_differ_across_steps(self, step: int) -> None:
        """Rows a full row-height apart should get different keys at any reasonable step."""
        upper = Bounds(100, 400, 500, 480)
        lower = Bounds(100, 600, 500, 680)
        assert build_pos_hash(upper, step) != build_pos_hash(lower, step)

    def test_rejects_non_positive_step(self) -> None:
        """Test that a non-positive step is rejected."""
        with pytest.raises(ValueError):
            build_pos_hash(Bounds(0, 0, 10, 10), step=0)


class TestBuildFingerprint:
    """Tests for build_fingerprint and fingerprint_message."""

    def test_base_hash_ignores_sender(self) -> None:
        """Base hash should not change when sender attribution changes."""
        with_sender = build_fingerprint(RawMessage(incoming=True, sender="Alice", text="hi"))
        without = build_fingerprint(RawMessage(incoming=True, text="hi"))
        assert with_sender.base_hash == without.base_hash
        assert with_sender.content_hash != without.content_hash

    def test_normalization_applies(self) -> None:
        """Test that case and whitespace do not change hashes."""
        a = build_fingerprint(RawMessage(incoming=True, sender=" Alice ", text="Hello  World"))
        b = build_fingerprint(RawMessage(incoming=True, sender="alice", text="hello world"))
        assert a == b
        assert a.sender_key == "alice"

    def test_type_and_direction_distinguish(self) -> None:
        """Test that type and direction change the base hash."""
        text = build_fingerprint(RawMessage(incoming=True, text="x"))
        image = build_fingerprint(RawMessage(incoming=True, type=MessageType.IMAGE, text="x"))
        outgoing = build_fingerprint(RawMessage(incoming=False, text="x"))
        assert len({text.base_hash, image.base_hash, outgoing.base_hash}) == 3

    def test_fingerprint_message_skips_invalid(self) -> None:
        """Test that invalid rows get no fingerprint."""
        assert fingerprint_message(RawMessage(incoming=False, text="hi")) is None
        assert fingerprint_message(RawMessage(incoming=True, text="hi")) is not None

    def test_pos_hash_uses_step(self) -> None:
        """Test that the position key follows the step."""
        message = RawMessage(incoming=True, text="hi", bounds=Bounds(0, 0, 100, 100))
        assert build_fingerprint(message, step=10).pos_hash == "5,5,10,10"


class TestMatchesSender:
    """Tests for matches_sender function."""

    def test_blank_is_compatible(self) -> None:
        """Test that a blank value matches anything."""
        assert matches_sender("", "alice") is True
        assert matches_sender("alice", "") is True
        assert matches_sender("", "") is True

    def test_equal_and_different(self) -> None:
        """Test equal and different values."""
        assert matches_sender("alice", "alice") is True
        assert matches_sender("alice", "bob") is False


class TestRowKey:
    """Tests for row_key function."""

    def test_prefers_sampler_id(self) -> None:
        """Test that the sampler id is used when present."""
        assert row_key(RawMessage(incoming=True, text="hi", id="node-7")) == "node-7"

    def test_content_digest_without_id(self) -> None:
        """Test the content digest used without an id."""
        a = row_key(RawMessage(incoming=True, text="Hi"))
        b = row_key(RawMessage(incoming=True, text="hi "))
        c = row_key(RawMessage(incoming=True, text="bye"))
        assert a == b
        assert a != c
        assert len(a) == 16
