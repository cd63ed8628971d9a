from servicefinder.core.session import ModalName, Modals, Session, require_auth


def test_display_name_fallbacks():
    session = Session(user={"id": "u1", "email": "ana@example.com", "display_name": "Ana"})
    assert session.display_name == "Ana"

    session = Session(user={"id": "u1", "email": "ana@example.com", "display_name": ""}, profile={"display_name": "Ana P"})
    assert session.display_name == "Ana P"

    session = Session(user={"id": "u1", "email": "ana@example.com"})
    assert session.display_name == "ana"

    session = Session(user={"id": "u1", "email": ""})
    assert session.display_name == "User"

    assert Session().display_name == ""


def test_update_tracks_identity_changes():
    session = Session()
    session.update({"id": "u1", "email": "a@b.co"}, "token-1")
    session.profile = {"display_name": "A"}
    assert session.is_authenticated
    assert session.access_token == "token-1"

    session.update({"id": "u1", "email": "a@b.co"})
    assert session.profile == {"display_name": "A"}
    assert session.access_token == "token-1"

    session.update({"id": "u2", "email": "c@d.co"}, "token-2")
    assert session.profile is None
    assert session.user_id == "u2"

    session.update(None)
    assert session.is_authenticated is False
    assert session.access_token is None


def test_modals_are_independent():
    modals = Modals()
    modals.open(ModalName.ADD_LISTING)
    modals.open(ModalName.AUTH)
    assert modals.is_open(ModalName.ADD_LISTING)
    assert modals.is_open(ModalName.AUTH)
    assert not modals.is_open(ModalName.RATE_LISTING)

    modals.close(ModalName.AUTH)
    assert modals.is_open(ModalName.ADD_LISTING)


def test_closing_rate_modal_forgets_selection():
    modals = Modals()
    modals.selected_listing = {"id": "l1"}
    modals.open(ModalName.RATE_LISTING)
    modals.close(ModalName.RATE_LISTING)
    assert modals.selected_listing is None


def test_require_auth_opens_auth_modal_when_signed_out():
    modals = Modals()
    assert require_auth(Session(), modals) is False
    assert modals.is_open(ModalName.AUTH)

    modals = Modals()
    assert require_auth(Session(user={"id": "u1"}), modals) is True
    assert not modals.is_open(ModalName.AUTH)
