import pytest

from ulticket import constants as ucst
from ulticket.security.tickets.errors import ProgrammingError, TicketNotIssuedError, TransportError
from ulticket.security.tickets.manager import TicketManager
from ulticket.security.tickets.models import UseOutcome
from ulticket.security.tickets.operations import encode_counter

from conftest import DAY, HOUR, NOW


def _flip(token, page, byte, mask=0x01):
    offset = page * 4 + byte
    token.memory[offset] ^= mask


class TestFormat:
    def test_format_then_check_format(self, manager, token):
        assert manager.format()
        assert manager.check_format()
        assert token.read_pages(4, 1) == ucst.APPLICATION_TAG

    def test_blank_token_is_not_formatted(self, manager):
        assert not manager.check_format()

    @pytest.mark.parametrize("offset", range(5 * 4, 15 * 4))
    def test_any_nonzero_byte_in_pages_5_to_14_breaks_format(self, manager, token, offset):
        manager.format()
        token.memory[offset] = 0x01
        assert not manager.check_format()

    def test_page_15_is_ignored(self, manager, token):
        manager.format()
        token.memory[15 * 4] = 0x01
        assert manager.check_format()

    def test_wrong_tag_breaks_format(self, manager, token):
        manager.format()
        _flip(token, 4, 0)
        assert not manager.check_format()

    def test_lock_bits_break_format(self, manager, token):
        manager.format()
        token.write_pages(2, b"\x00\x00\x00\x01")
        assert not manager.check_format()

    def test_format_does_not_need_zero_otp(self, manager, token):
        token.write_pages(3, bytes.fromhex("00000007"))
        assert manager.format()
        assert token.read_pages(3, 1) == bytes.fromhex("00000007")

    def test_format_clears_existing_ticket(self, issued, token):
        assert issued.format()
        assert token.read_pages(5, 4) == bytes(16)

    def test_format_fails_on_locked_page(self, manager, token):
        token.write_pages(2, b"\x00\x00\x20\x00")
        assert not manager.format()


class TestIssue:
    def test_issue_writes_fields(self, manager, token, authenticator):
        manager.format()
        assert manager.issue(NOW + 30 * DAY, 10)
        assert int.from_bytes(token.read_pages(5, 1), "big") == NOW + 30 * DAY
        assert int.from_bytes(token.read_pages(6, 1), "big") == 10
        assert token.read_pages(7, 2) != bytes(8)

    def test_issue_requires_format(self, manager):
        assert not manager.issue(NOW + DAY, 10)

    def test_issue_twice_requires_reformat(self, issued):
        assert not issued.issue(NOW + DAY, 5)

    def test_issue_rejects_more_than_32_uses(self, manager):
        manager.format()
        assert not manager.issue(NOW + DAY, 33)

    @pytest.mark.parametrize("expiry,uses", [(-1, 1), (2**32, 1), (NOW, -1)])
    def test_issue_rejects_values_outside_u32(self, manager, expiry, uses):
        manager.format()
        with pytest.raises(ProgrammingError):
            manager.issue(expiry, uses)

    def test_mac_ignores_lock_bytes_and_counter(self, issued, token, authenticator):
        from ulticket.security.tickets.operations import signed_message

        pages = bytearray(token.read_pages(0, 5))
        message = signed_message(bytes(pages), NOW + 30 * DAY, 10)
        assert message[10:16] == bytes(6)
        assert authenticator.verify(message, token.read_pages(7, 2))


class TestUse:
    def test_issue_then_use(self, issued):
        result = issued.use(NOW + HOUR)
        assert result.valid
        assert result.outcome == UseOutcome.VALID
        assert result.remaining_uses == 9
        assert result.expiry_time == NOW + 30 * DAY

    def test_use_sets_one_counter_bit(self, issued, token):
        issued.use(NOW + HOUR)
        assert token.read_pages(3, 1) == bytes.fromhex("00000001")
        issued.use(NOW + HOUR)
        assert token.read_pages(3, 1) == bytes.fromhex("00000003")

    def test_use_on_formatted_token_raises(self, manager):
        manager.format()
        with pytest.raises(TicketNotIssuedError):
            manager.use(NOW)

    def test_exhaustion(self, issued, token):
        remaining = [issued.use(NOW + HOUR).remaining_uses for _ in range(10)]
        assert remaining == list(range(9, -1, -1))

        result = issued.use(NOW + HOUR)
        assert not result.valid
        assert result.outcome == UseOutcome.EXHAUSTED
        assert result.remaining_uses == 0
        assert token.read_pages(3, 1) == encode_counter(10).to_bytes(4, "big")

    def test_counter_never_exceeds_32(self, manager, token):
        manager.format()
        manager.issue(NOW + DAY, 32)
        for _ in range(32):
            assert manager.use(NOW).valid
        result = manager.use(NOW)
        assert result.outcome == UseOutcome.EXHAUSTED
        assert token.read_pages(3, 1) == b"\xff" * 4

    def test_expiry_at_boundary_is_still_valid(self, issued):
        assert issued.use(NOW + 30 * DAY).valid

    def test_expired_ticket_keeps_remaining_uses(self, issued, token):
        assert issued.use(NOW + DAY).remaining_uses == 9
        result = issued.use(NOW + 31 * DAY)
        assert not result.valid
        assert result.outcome == UseOutcome.EXPIRED
        assert result.remaining_uses == 9
        assert token.read_pages(3, 1) == bytes.fromhex("00000001")

    @pytest.mark.parametrize(
        "page,byte",
        [(5, 0), (5, 3), (6, 0), (6, 3), (4, 0), (4, 2), (0, 1), (7, 0), (8, 3)],
    )
    def test_tampering_fails_authentication(self, issued, token, page, byte):
        _flip(token, page, byte)
        result = issued.use(NOW + HOUR)
        assert not result.valid
        assert result.outcome == UseOutcome.AUTHENTICATION_FAILED
        assert token.read_pages(3, 1) == bytes(4)

    @pytest.mark.parametrize("bit", range(8))
    def test_each_bit_of_allowed_uses_is_covered(self, issued, token, bit):
        _flip(token, 6, 3, 1 << bit)
        assert issued.use(NOW + HOUR).outcome == UseOutcome.AUTHENTICATION_FAILED

    def test_lock_bits_do_not_invalidate_ticket(self, issued, token):
        token.write_pages(2, b"\x00\x00\x00\x80")
        assert issued.use(NOW + HOUR).valid

    def test_corrupted_counter_is_invalid(self, issued, token):
        token.write_pages(3, bytes.fromhex("00000002"))
        result = issued.use(NOW + HOUR)
        assert not result.valid
        assert result.outcome == UseOutcome.COUNTER_CORRUPTED
        assert result.remaining_uses == 0
        assert token.read_pages(3, 1) == bytes.fromhex("00000002")

    def test_counter_write_refused_is_transport_error(self, issued, token):
        token.write_pages(2, b"\x00\x00\x08\x00")
        with pytest.raises(TransportError):
            issued.use(NOW + HOUR)

    def test_other_key_cannot_validate(self, issued, token):
        from ulticket.security.tickets.authenticator import RecordAuthenticator

        other = TicketManager(token, RecordAuthenticator(b"\x42" * 16))
        assert other.use(NOW).outcome == UseOutcome.AUTHENTICATION_FAILED

    def test_ticket_copied_to_other_token_fails(self, issued, token, authenticator):
        from ulticket.storage.memory import MemoryToken

        clone = MemoryToken(uid=bytes.fromhex("04000000000001"))
        clone.write_pages(4, token.read_pages(4, 5))
        assert TicketManager(clone, authenticator).use(NOW).outcome == UseOutcome.AUTHENTICATION_FAILED


class TestReissue:
    def test_reissue_after_uses(self, issued):
        for _ in range(3):
            issued.use(NOW + HOUR)
        result = issued.reissue(NOW + 60 * DAY, 5)
        assert result.success
        assert result.remaining_uses == 2
        use = issued.use(NOW + 45 * DAY)
        assert use.valid
        assert use.remaining_uses == 1

    def test_reissue_below_consumed_leaves_record(self, issued, token):
        for _ in range(3):
            issued.use(NOW + HOUR)
        before = token.read_memory()
        result = issued.reissue(NOW + 60 * DAY, 2)
        assert not result
        assert "already used 3 times" in result.reason
        assert token.read_memory() == before

    def test_reissue_equal_to_consumed(self, issued):
        issued.use(NOW)
        result = issued.reissue(NOW + DAY, 1)
        assert result.success
        assert result.remaining_uses == 0
        assert issued.use(NOW).outcome == UseOutcome.EXHAUSTED

    def test_reissue_rejects_more_than_32(self, issued):
        result = issued.reissue(NOW + DAY, 33)
        assert not result.success

    def test_reissue_leaves_counter(self, issued, token):
        issued.use(NOW)
        issued.reissue(NOW + DAY, 10)
        assert token.read_pages(3, 1) == bytes.fromhex("00000001")

    def test_reissue_revives_expired_ticket(self, issued):
        assert issued.use(NOW + 31 * DAY).outcome == UseOutcome.EXPIRED
        assert issued.reissue(NOW + 60 * DAY, 10).success
        assert issued.use(NOW + 31 * DAY).valid

    def test_reissue_on_formatted_token(self, manager):
        manager.format()
        result = manager.reissue(NOW + DAY, 4)
        assert result.success
        assert manager.use(NOW).remaining_uses == 3

    def test_reissue_requires_tag(self, manager):
        assert not manager.reissue(NOW + DAY, 4).success

    def test_reissue_with_corrupted_counter(self, issued, token):
        token.write_pages(3, bytes.fromhex("00000004"))
        assert not issued.reissue(NOW + DAY, 10).success


class TestLock:
    def test_lock_sets_bits(self, issued, token):
        assert issued.lock()
        assert token.read_pages(2, 1)[2:] == b"\xf0\xff"

    def test_locked_token_refuses_further_writes(self, issued, token):
        issued.lock()
        assert not issued.format()
        assert not issued.issue(NOW + DAY, 5)
        assert not issued.reissue(NOW + DAY, 5).success
        assert token.read_pages(4, 1) == ucst.APPLICATION_TAG

    def test_locked_ticket_can_still_be_used(self, issued):
        issued.lock()
        result = issued.use(NOW + HOUR)
        assert result.valid
        assert result.remaining_uses == 9


class TestSafeModeProtocol:
    def test_lifecycle_is_repeatable(self, safe_manager, token):
        for _ in range(2):
            assert safe_manager.format()
            assert safe_manager.issue(NOW + DAY, 3)
            assert safe_manager.use(NOW).valid
            # Wipe the emulated OTP page like the CLI erase command does
            token.write_pages(15, bytes(4))

    def test_use_counts_on_spare_page(self, safe_manager, token):
        safe_manager.format()
        safe_manager.issue(NOW + DAY, 3)
        safe_manager.use(NOW)
        safe_manager.use(NOW)
        assert token.read_pages(3, 1) == bytes(4)
        assert token.read_pages(15, 1) == bytes.fromhex("00000003")

    def test_lock_is_discarded(self, safe_manager, token):
        safe_manager.format()
        assert safe_manager.lock()
        assert token.read_pages(2, 1)[2:] == b"\x00\x00"
        assert safe_manager.issue(NOW + DAY, 3)

    def test_format_keeps_emulated_counter(self, safe_manager):
        safe_manager.format()
        safe_manager.issue(NOW + DAY, 5)
        safe_manager.use(NOW)
        safe_manager.format()
        safe_manager.issue(NOW + DAY, 5)
        assert safe_manager.use(NOW).remaining_uses == 3


def test_end_to_end(manager):
    assert manager.format()
    assert manager.issue(NOW + 30 * DAY, 10)

    first = manager.use(NOW + DAY)
    assert first.valid
    assert first.remaining_uses == 9

    late = manager.use(NOW + 31 * DAY)
    assert not late.valid
    assert late.outcome == UseOutcome.EXPIRED
    assert late.remaining_uses == 9
