from provision_like_user.models import DirectoryUser, GroupRef, ProvisionRequest, ReplicationOutcome


def test_request_from_payload_maps_pascal_case_keys():
    request = ProvisionRequest.from_payload(
        {
            "NewUserEmail": "john.doe@contoso.com",
            "ExistingUserEmail": "jane.smith@contoso.com",
            "NewUserFirstName": "John",
            "NewUserLastName": "Doe",
            "TicketId": 1234,
            "Unrelated": "ignored",
        }
    )

    assert request.new_user_email == "john.doe@contoso.com"
    assert request.existing_user_email == "jane.smith@contoso.com"
    assert request.ticket_id == "1234"
    assert request.new_user_display_name is None
    assert request.security_key is None


def test_request_header_security_key_wins_over_body():
    request = ProvisionRequest.from_payload({"securityKey": "body"}, header_security_key="header")

    assert request.security_key == "header"


def test_directory_user_collects_sku_ids_in_order():
    user = DirectoryUser.from_graph(
        {
            "id": "u1",
            "displayName": "Jane",
            "userPrincipalName": "jane@contoso.com",
            "assignedLicenses": [{"skuId": "b"}, {"skuId": None}, {"skuId": "a"}],
        }
    )

    assert user.assigned_licenses == ("b", "a")


def test_group_ref_discriminates_type_and_mail():
    role = GroupRef.from_graph({"@odata.type": "#microsoft.graph.directoryRole", "id": "r"})
    unified = GroupRef.from_graph(
        {
            "@odata.type": "#microsoft.graph.group",
            "id": "g",
            "mailEnabled": True,
            "securityEnabled": False,
            "groupTypes": ["Unified"],
        }
    )

    assert not role.is_group
    assert unified.is_group
    assert not unified.is_mail_enabled
    assert unified.mail_identity == "g"


def test_replication_outcome_tallies():
    outcome = ReplicationOutcome()
    outcome.record_success()
    outcome.record_failure("sku-x", "no seats")

    assert (outcome.succeeded, outcome.failed, outcome.attempted) == (1, 1, 2)
    assert outcome.failures == [("sku-x", "no seats")]
