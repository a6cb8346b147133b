from civic_issues import storage
from civic_issues.seed import DEFAULT_DEPARTMENTS, seed_departments


def test_seed_creates_default_departments(db_session):
    created = seed_departments(db_session)

    assert len(created) == len(DEFAULT_DEPARTMENTS)
    names = [d.name for d in storage.list_departments(db_session)]
    assert names == sorted(d.name for d in DEFAULT_DEPARTMENTS)


def test_seed_is_idempotent(db_session):
    seed_departments(db_session)
    assert seed_departments(db_session) == []
    assert len(storage.list_departments(db_session)) == len(DEFAULT_DEPARTMENTS)
