from carebridge.models import Doctor
from conftest import make_doctor, make_patient, make_user


def profile_body(**overrides):
    body = {
        "specialty": "Cardiology",
        "license": "VN-CARD-0042",
        "experienceYears": 12,
        "isVolunteer": True,
        "telehealthEnabled": False,
    }
    body.update(overrides)
    return body


def test_profile_is_created_then_updated(client, db, auth):
    user = make_user(db, "doctor")
    auth.login(user)

    assert client.get("/doctors/me").status_code == 404

    created = client.put("/doctors/me", json=profile_body())
    assert created.status_code == 200
    doctor = created.json()["doctor"]
    assert doctor["userId"] == user.id
    assert doctor["fullName"] == user.full_name
    assert doctor["volunteerMinutes"] == 0

    updated = client.put("/doctors/me", json=profile_body(experienceYears=13)).json()["doctor"]
    assert updated["id"] == doctor["id"]
    assert client.get("/doctors/me").json()["doctor"]["experienceYears"] == 13
    assert db.query(Doctor).filter(Doctor.user_id == user.id).count() == 1


def test_new_doctor_can_declare_slots(client, db, auth):
    auth.login(make_user(db, "doctor"))
    client.put("/doctors/me", json=profile_body())

    response = client.put(
        "/doctors/me/slots", json={"slots": [{"date": "2025-06-05", "times": ["09:00"]}]}
    )

    assert response.status_code == 200


def test_license_belongs_to_one_doctor(client, db, auth):
    existing = make_doctor(db)
    auth.login(make_user(db, "doctor"))

    response = client.put("/doctors/me", json=profile_body(license=existing.license))

    assert response.status_code == 400
    assert response.json()["error"] == "validation_error"
    assert db.query(Doctor).count() == 1


def test_profile_validation_and_roles(client, db, auth):
    auth.login(make_user(db, "doctor"))
    assert client.put("/doctors/me", json=profile_body(experienceYears=-1)).status_code == 400
    assert client.put("/doctors/me", json=profile_body(specialty="  ")).status_code == 400

    auth.login(make_patient(db).user)
    assert client.put("/doctors/me", json=profile_body()).status_code == 403
    assert client.get("/doctors/me").status_code == 403


def test_directory_filters_and_sorts_by_experience(client, db):
    junior = make_doctor(db)
    senior = make_doctor(db)
    dermatologist = make_doctor(db)
    senior.experience_years, senior.is_volunteer = 20, True
    junior.experience_years, junior.is_volunteer = 3, True
    dermatologist.experience_years, dermatologist.specialty = 8, "Dermatology"
    dermatologist.telehealth_enabled = False
    db.commit()

    body = client.get("/doctors").json()
    assert [d["id"] for d in body["doctors"]] == [senior.id, dermatologist.id, junior.id]
    assert body["pagination"]["total"] == 3

    volunteers = client.get("/doctors", params={"isVolunteer": "true"}).json()["doctors"]
    assert [d["id"] for d in volunteers] == [senior.id, junior.id]

    by_specialty = client.get("/doctors", params={"specialty": "Dermatology"}).json()["doctors"]
    assert [d["id"] for d in by_specialty] == [dermatologist.id]

    no_telehealth = client.get("/doctors", params={"telehealthEnabled": "false"}).json()
    assert [d["id"] for d in no_telehealth["doctors"]] == [dermatologist.id]

    second_page = client.get("/doctors", params={"page": 2, "limit": 2}).json()
    assert [d["id"] for d in second_page["doctors"]] == [junior.id]
    assert second_page["pagination"]["pages"] == 2
