import pytest
import uuid
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from medlens.domain.auth.models import User, UserRole
from medlens.domain.patients.repository import PatientFileRepository


@pytest.mark.patients
@pytest.mark.integration
class TestPatientRegistry:
    """Patient creation and profile edits."""

    async def test_create_patient(self, client: AsyncClient, front_desk_user: User, auth_headers) -> None:
        response = await client.post("/api/auth/patients", json={
            "firstName": "John",
            "lastName": "Doe",
            "dateOfBirth": "1990-01-01",
            "gender": "male",
            "phone": "+1234567890"
        }, headers=auth_headers(front_desk_user))

        assert response.status_code == 201
        data = response.json()
        assert data["patient_id"].startswith("PAT")
        assert data["patient_id"] == data["patient_id"].upper()
        assert data["status"] == "active"
        assert data["is_active"] is True
        assert data["assigned_doctor_id"] is None

    async def test_create_patient_rejects_bad_phone(
        self, client: AsyncClient, front_desk_user: User, auth_headers
    ) -> None:
        response = await client.post("/api/auth/patients", json={
            "firstName": "John",
            "lastName": "Doe",
            "phone": "call-me-maybe"
        }, headers=auth_headers(front_desk_user))

        assert response.status_code == 422
        assert response.json()["details"]["errors"][0]["loc"] == ["body", "phone"]
        assert data["created_by"] == str(front_desk_user.id)

    async def test_create_patient_with_doctor(
        self, client: AsyncClient, admin_user: User, consulting_doctor: User, auth_headers
    ) -> None:
        response = await client.post("/api/auth/patients", json={
            "first_name": "Jane",
            "last_name": "Roe",
            "assigned_doctor_id": str(consulting_doctor.id)
        }, headers=auth_headers(admin_user))

        assert response.status_code == 201
        assert response.json()["assigned_doctor_id"] == str(consulting_doctor.id)

    async def test_create_patient_forbidden_for_doctor(
        self, client: AsyncClient, senior_doctor: User, auth_headers
    ) -> None:
        response = await client.post("/api/auth/patients", json={
            "first_name": "Jane",
            "last_name": "Roe"
        }, headers=auth_headers(senior_doctor))

        assert response.status_code == 403

    async def test_assigned_doctor_updates_patient(
        self, client: AsyncClient, consulting_doctor: User, make_patient, auth_headers
    ) -> None:
        patient = await make_patient(assigned_doctor=consulting_doctor)

        response = await client.put(
            f"/api/auth/patients/{patient.id}",
            json={"notes": "Follow up in two weeks"},
            headers=auth_headers(consulting_doctor)
        )

        assert response.status_code == 200
        assert response.json()["notes"] == "Follow up in two weeks"

    async def test_other_doctor_cannot_update_patient(
        self, client: AsyncClient, consulting_doctor: User, make_user, make_patient, auth_headers
    ) -> None:
        other = await make_user(UserRole.CONSULTING_DOCTOR)
        patient = await make_patient(assigned_doctor=consulting_doctor)

        response = await client.put(
            f"/api/auth/patients/{patient.id}",
            json={"notes": "Not mine"},
            headers=auth_headers(other)
        )

        assert response.status_code == 403

    async def test_update_missing_patient(self, client: AsyncClient, admin_user: User, auth_headers) -> None:
        response = await client.put(
            "/api/auth/patients/00000000-0000-0000-0000-000000000000",
            json={"notes": "?"},
            headers=auth_headers(admin_user)
        )

        assert response.status_code == 404


@pytest.mark.patients
@pytest.mark.integration
class TestPatientVisibility:
    """Which patients each role can list and read."""

    async def test_visibility_per_role(
        self, client: AsyncClient, admin_user: User, front_desk_user: User,
        senior_doctor: User, consulting_doctor: User, make_user, make_patient, auth_headers
    ) -> None:
        outsider = await make_user(UserRole.CONSULTING_DOCTOR)
        jr = await make_user(UserRole.JR_DOCTOR)
        await client.post("/api/auth/assign-doctor", json={
            "consultingDoctorId": str(consulting_doctor.id),
            "seniorDoctorId": str(senior_doctor.id)
        }, headers=auth_headers(admin_user))

        own = await make_patient(assigned_doctor=senior_doctor)
        team = await make_patient(assigned_doctor=consulting_doctor)
        foreign = await make_patient(assigned_doctor=outsider)
        unassigned = await make_patient()

        async def visible_ids(user: User) -> set:
            response = await client.get("/api/auth/patients", headers=auth_headers(user))
            assert response.status_code == 200
            data = response.json()
            assert data["count"] == len(data["patients"])
            return {patient["id"] for patient in data["patients"]}

        everyone = {str(p.id) for p in (own, team, foreign, unassigned)}
        assert await visible_ids(admin_user) == everyone
        assert await visible_ids(front_desk_user) == everyone
        assert await visible_ids(senior_doctor) == {str(own.id), str(team.id)}
        assert await visible_ids(consulting_doctor) == {str(team.id)}
        assert await visible_ids(jr) == set()

    async def test_get_patient_not_visible(
        self, client: AsyncClient, consulting_doctor: User, make_patient, auth_headers
    ) -> None:
        patient = await make_patient()

        response = await client.get(f"/api/auth/patients/{patient.id}", headers=auth_headers(consulting_doctor))

        assert response.status_code == 403

    async def test_status_filter(
        self, client: AsyncClient, admin_user: User, make_patient, auth_headers
    ) -> None:
        headers = auth_headers(admin_user)
        open_patient = await make_patient()
        closed_patient = await make_patient()
        await client.put(f"/api/auth/patients/{closed_patient.id}/close-case", headers=headers)

        response = await client.get("/api/auth/patients", params={"status": "case_closed"}, headers=headers)

        assert [p["id"] for p in response.json()["patients"]] == [str(closed_patient.id)]

        response = await client.get("/api/auth/patients", params={"status": "active"}, headers=headers)
        assert [p["id"] for p in response.json()["patients"]] == [str(open_patient.id)]


@pytest.mark.patients
@pytest.mark.integration
class TestPatientAssignment:
    """Doctor <-> patient edges."""

    async def test_assign_overwrites_previous_doctor(
        self, client: AsyncClient, front_desk_user: User, senior_doctor: User,
        consulting_doctor: User, make_patient, auth_headers
    ) -> None:
        patient = await make_patient(assigned_doctor=senior_doctor)

        response = await client.put(
            f"/api/auth/patients/{patient.id}/assign-doctor",
            json={"doctorId": str(consulting_doctor.id)},
            headers=auth_headers(front_desk_user)
        )

        assert response.status_code == 200
        assert response.json()["assigned_doctor_id"] == str(consulting_doctor.id)

        response = await client.get("/api/auth/patients", headers=auth_headers(senior_doctor))
        assert response.json()["count"] == 0

    async def test_assign_requires_doctor_role(
        self, client: AsyncClient, admin_user: User, front_desk_user: User, make_patient, auth_headers
    ) -> None:
        patient = await make_patient()

        response = await client.put(
            f"/api/auth/patients/{patient.id}/assign-doctor",
            json={"doctorId": str(front_desk_user.id)},
            headers=auth_headers(admin_user)
        )

        assert response.status_code == 400
        assert response.json()["error_code"] == "ROLE_MISMATCH"

    async def test_assign_inactive_doctor(
        self, client: AsyncClient, admin_user: User, make_user, make_patient, auth_headers
    ) -> None:
        inactive = await make_user(UserRole.CONSULTING_DOCTOR, is_active=False)
        patient = await make_patient()

        response = await client.put(
            f"/api/auth/patients/{patient.id}/assign-doctor",
            json={"doctorId": str(inactive.id)},
            headers=auth_headers(admin_user)
        )

        assert response.status_code == 409

    async def test_assign_forbidden_for_doctor(
        self, client: AsyncClient, senior_doctor: User, make_patient, auth_headers
    ) -> None:
        patient = await make_patient()

        response = await client.put(
            f"/api/auth/patients/{patient.id}/assign-doctor",
            json={"doctorId": str(senior_doctor.id)},
            headers=auth_headers(senior_doctor)
        )

        assert response.status_code == 403

    async def test_unassign_is_idempotent(
        self, client: AsyncClient, front_desk_user: User, consulting_doctor: User, make_patient, auth_headers
    ) -> None:
        patient = await make_patient(assigned_doctor=consulting_doctor)
        headers = auth_headers(front_desk_user)

        for _ in range(2):
            response = await client.put(f"/api/auth/patients/{patient.id}/unassign-doctor", headers=headers)
            assert response.status_code == 200
            assert response.json()["assigned_doctor_id"] is None

    async def test_closed_case_assignment_conflict(
        self, client: AsyncClient, admin_user: User, consulting_doctor: User, make_patient, auth_headers
    ) -> None:
        headers = auth_headers(admin_user)
        patient = await make_patient()
        await client.put(f"/api/auth/patients/{patient.id}/close-case", headers=headers)

        response = await client.put(
            f"/api/auth/patients/{patient.id}/assign-doctor",
            json={"doctorId": str(consulting_doctor.id)},
            headers=headers
        )

        assert response.status_code == 409


@pytest.mark.patients
@pytest.mark.integration
class TestCaseClosure:
    """Closing a case is terminal and idempotent."""

    async def test_close_case_twice(
        self, client: AsyncClient, consulting_doctor: User, make_patient, auth_headers
    ) -> None:
        patient = await make_patient(assigned_doctor=consulting_doctor)
        headers = auth_headers(consulting_doctor)

        first = await client.put(f"/api/auth/patients/{patient.id}/close-case", headers=headers)
        second = await client.put(f"/api/auth/patients/{patient.id}/close-case", headers=headers)

        assert first.status_code == 200
        assert second.status_code == 200
        assert first.json()["status"] == second.json()["status"] == "case_closed"
        assert second.json()["is_active"] is False
        assert second.json()["closed_by"] == str(consulting_doctor.id)
        assert first.json()["closed_at"] == second.json()["closed_at"]

    async def test_close_case_forbidden_without_write_access(
        self, client: AsyncClient, consulting_doctor: User, make_patient, auth_headers
    ) -> None:
        patient = await make_patient()

        response = await client.put(f"/api/auth/patients/{patient.id}/close-case", headers=auth_headers(consulting_doctor))

        assert response.status_code == 403

    async def test_closed_case_rejects_edits(
        self, client: AsyncClient, front_desk_user: User, make_patient, auth_headers
    ) -> None:
        patient = await make_patient()
        headers = auth_headers(front_desk_user)
        await client.put(f"/api/auth/patients/{patient.id}/close-case", headers=headers)

        response = await client.put(f"/api/auth/patients/{patient.id}", json={"notes": "late"}, headers=headers)

        assert response.status_code == 409


@pytest.mark.patients
@pytest.mark.integration
class TestPatientFiles:
    """File records and who may delete them."""

    async def _upload(self, client: AsyncClient, patient_id, headers: dict, key: str) -> dict:
        response = await client.post(f"/api/auth/patients/{patient_id}/files", json={
            "fileName": "scan.pdf",
            "storageKey": key,
            "contentType": "application/pdf",
            "sizeBytes": 2048
        }, headers=headers)
        assert response.status_code == 201
        return response.json()

    async def test_upload_and_list(
        self, client: AsyncClient, consulting_doctor: User, make_patient, auth_headers
    ) -> None:
        patient = await make_patient(assigned_doctor=consulting_doctor)
        headers = auth_headers(consulting_doctor)

        record = await self._upload(client, patient.id, headers, "patients/1/scan.pdf")
        assert record["uploaded_by"] == str(consulting_doctor.id)

        response = await client.get(f"/api/auth/patients/{patient.id}/files", headers=headers)
        assert response.status_code == 200
        assert response.json()["count"] == 1

    async def test_upload_requires_visible_patient(
        self, client: AsyncClient, consulting_doctor: User, make_patient, auth_headers
    ) -> None:
        patient = await make_patient()

        response = await client.post(f"/api/auth/patients/{patient.id}/files", json={
            "fileName": "scan.pdf",
            "storageKey": "patients/2/scan.pdf"
        }, headers=auth_headers(consulting_doctor))

        assert response.status_code == 403

    async def test_delete_by_uploader_or_admin_only(
        self, client: AsyncClient, admin_user: User, front_desk_user: User,
        consulting_doctor: User, make_patient, auth_headers
    ) -> None:
        patient = await make_patient(assigned_doctor=consulting_doctor)
        first = await self._upload(client, patient.id, auth_headers(consulting_doctor), "patients/3/a.pdf")
        second = await self._upload(client, patient.id, auth_headers(consulting_doctor), "patients/3/b.pdf")

        response = await client.delete(
            f"/api/auth/patients/{patient.id}/files/{first['id']}",
            headers=auth_headers(front_desk_user)
        )
        assert response.status_code == 403

        response = await client.delete(
            f"/api/auth/patients/{patient.id}/files/{first['id']}",
            headers=auth_headers(consulting_doctor)
        )
        assert response.status_code == 204

        response = await client.delete(
            f"/api/auth/patients/{patient.id}/files/{second['id']}",
            headers=auth_headers(admin_user)
        )
        assert response.status_code == 204

        response = await client.get(f"/api/auth/patients/{patient.id}/files", headers=auth_headers(admin_user))
        assert response.json()["count"] == 0

    async def test_duplicate_storage_key(
        self, client: AsyncClient, admin_user: User, make_patient, auth_headers
    ) -> None:
        patient = await make_patient()
        headers = auth_headers(admin_user)
        await self._upload(client, patient.id, headers, "patients/4/a.pdf")

        response = await client.post(f"/api/auth/patients/{patient.id}/files", json={
            "fileName": "again.pdf",
            "storageKey": "patients/4/a.pdf"
        }, headers=headers)

        assert response.status_code == 409


@pytest.mark.patients
@pytest.mark.integration
class TestPatientDeletion:
    """Admin-only removal of a patient record."""

    async def test_admin_deletes_patient(
        self, client: AsyncClient, db_session: AsyncSession, admin_user: User,
        consulting_doctor: User, make_patient, auth_headers
    ) -> None:
        patient = await make_patient(assigned_doctor=consulting_doctor)
        patient_id = patient.id
        headers = auth_headers(admin_user)
        response = await client.post(f"/api/auth/patients/{patient_id}/files", json={
            "fileName": "scan.pdf",
            "storageKey": "patients/5/scan.pdf"
        }, headers=headers)
        assert response.status_code == 201

        response = await client.delete(f"/api/auth/patients/{patient_id}", headers=headers)
        assert response.status_code == 204

        response = await client.get(f"/api/auth/patients/{patient_id}", headers=headers)
        assert response.status_code == 404
        assert await PatientFileRepository(db_session).list_for_patient(patient_id) == []

        response = await client.get("/api/auth/patients", headers=auth_headers(consulting_doctor))
        assert response.json()["count"] == 0

    async def test_delete_forbidden_for_non_admin(
        self, client: AsyncClient, front_desk_user: User, consulting_doctor: User,
        make_patient, auth_headers
    ) -> None:
        patient = await make_patient(assigned_doctor=consulting_doctor)

        for user in (front_desk_user, consulting_doctor):
            response = await client.delete(f"/api/auth/patients/{patient.id}", headers=auth_headers(user))
            assert response.status_code == 403

        response = await client.get(f"/api/auth/patients/{patient.id}", headers=auth_headers(consulting_doctor))
        assert response.status_code == 200

    async def test_delete_missing_patient(self, client: AsyncClient, admin_user: User, auth_headers) -> None:
        response = await client.delete(f"/api/auth/patients/{uuid.uuid4()}", headers=auth_headers(admin_user))

        assert response.status_code == 404
        assert response.json()["error_code"] == "NOT_FOUND"
