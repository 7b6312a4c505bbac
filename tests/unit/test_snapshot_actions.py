"""Unit tests for actionsAllowed."""

from matchday.models.domain import ParticipantStatus
from matchday.services.matches.snapshot import ACTION_ORDER, compute_actions_allowed


def actions(
    *,
    is_canceled=False,
    is_locked=False,
    my_status=None,
    is_creator=False,
    is_match_admin=False,
):
    return compute_actions_allowed(
        is_canceled=is_canceled,
        is_locked=is_locked,
        my_status=my_status,
        is_creator=is_creator,
        is_match_admin=is_match_admin,
    )


class TestActionsAllowed:
    """Test compute_actions_allowed."""

    def test_cancelled_match_allows_nothing(self):
        assert actions(is_canceled=True, is_creator=True) == []
        assert actions(is_canceled=True, my_status=ParticipantStatus.CONFIRMED) == []

    def test_stranger_can_confirm(self):
        assert actions() == ["confirm"]

    def test_invited_can_confirm_or_decline(self):
        assert actions(my_status=ParticipantStatus.INVITED) == ["confirm", "decline"]

    def test_confirmed_can_only_withdraw(self):
        assert actions(my_status=ParticipantStatus.CONFIRMED) == ["withdraw"]

    def test_waitlisted_can_withdraw(self):
        assert actions(my_status=ParticipantStatus.WAITLISTED) == ["withdraw"]

    def test_declined_and_withdrawn_can_reconfirm(self):
        assert actions(my_status=ParticipantStatus.DECLINED) == ["confirm"]
        assert actions(my_status=ParticipantStatus.WITHDRAWN) == ["confirm"]

    def test_locked_match_still_allows_withdraw(self):
        assert actions(is_locked=True, my_status=ParticipantStatus.CONFIRMED) == ["withdraw"]
        assert actions(is_locked=True, my_status=ParticipantStatus.INVITED) == []

    def test_creator_gets_everything_in_canonical_order(self):
        result = actions(is_creator=True)
        assert result == ["confirm", "invite", "lock", "update", "cancel", "manage_admins"]
        assert result == [a for a in ACTION_ORDER if a in result]

    def test_creator_on_locked_match(self):
        assert actions(is_creator=True, is_locked=True) == [
            "unlock",
            "update",
            "cancel",
            "manage_admins",
        ]

    def test_match_admin_can_invite_and_lock(self):
        result = actions(is_match_admin=True, my_status=ParticipantStatus.CONFIRMED)
        assert result == ["withdraw", "invite", "lock"]

    def test_match_admin_can_unlock(self):
        result = actions(is_match_admin=True, is_locked=True, my_status=ParticipantStatus.CONFIRMED)
        assert result == ["withdraw", "unlock"]

    def test_no_duplicates(self):
        result = actions(is_creator=True, is_match_admin=True, my_status=ParticipantStatus.WAITLISTED)
        assert len(result) == len(set(result))
