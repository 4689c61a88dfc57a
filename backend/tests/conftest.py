import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

from datetime import date, time, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import models
import schemas
from auth import get_current_user
from database import get_db
from enums import (
    AssignmentMode, InterventionAction, InterventionType, InterventionUrgency, UserRole
)
from services.intervention_service import InterventionService


@pytest.fixture()
def db_session():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    models.Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = SessionLocal()
    yield db
    db.close()
    engine.dispose()


def _make_user(db, team, role, email):
    user = models.UserAuth(
        email=email,
        first_name=email.split("@")[0].capitalize(),
        last_name="Test",
        role=role,
        team_id=team.id,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture()
def team(db_session):
    team = models.Team(name="Équipe Seido")
    db_session.add(team)
    db_session.commit()
    return team


@pytest.fixture()
def other_team(db_session):
    team = models.Team(name="Autre équipe")
    db_session.add(team)
    db_session.commit()
    return team


@pytest.fixture()
def manager(db_session, team):
    return _make_user(db_session, team, UserRole.gestionnaire, "gestionnaire@seido.fr")


@pytest.fixture()
def admin(db_session, team):
    return _make_user(db_session, team, UserRole.admin, "admin@seido.fr")


@pytest.fixture()
def tenant(db_session, team):
    return _make_user(db_session, team, UserRole.locataire, "locataire@seido.fr")


@pytest.fixture()
def provider(db_session, team):
    return _make_user(db_session, team, UserRole.prestataire, "plombier@seido.fr")


@pytest.fixture()
def provider_b(db_session, team):
    return _make_user(db_session, team, UserRole.prestataire, "electricien@seido.fr")


@pytest.fixture()
def outsider(db_session, other_team):
    return _make_user(db_session, other_team, UserRole.gestionnaire, "gestionnaire@autre.fr")


@pytest.fixture()
def lot(db_session, team):
    building = models.Building(name="Résidence des Lilas", city="Lyon", team_id=team.id)
    db_session.add(building)
    db_session.commit()
    lot = models.Lot(reference="A12", floor=1, building_id=building.id, team_id=team.id)
    db_session.add(lot)
    db_session.commit()
    return lot


@pytest.fixture()
def make_intervention(db_session, lot):
    def _make(creator, **overrides):
        data = {
            "title": "Fuite sous l'évier",
            "description": "L'eau coule sous l'évier de la cuisine",
            "type": InterventionType.plomberie,
            "urgency": InterventionUrgency.haute,
            "lot_id": lot.id,
        }
        data.update(overrides)
        return InterventionService.create_intervention(
            db_session, schemas.InterventionCreate(**data), creator
        )
    return _make


@pytest.fixture()
def planning_intervention(db_session, make_intervention, manager, tenant, provider):
    """Intervention créée par le locataire, approuvée, prestataire assigné, en planification"""
    intervention = make_intervention(tenant)
    InterventionService.transition(db_session, intervention.id, InterventionAction.approve, manager)
    InterventionService.assign_user(db_session, intervention.id, provider.id, UserRole.prestataire, manager)
    InterventionService.transition(db_session, intervention.id, InterventionAction.start_planning, manager)
    db_session.refresh(intervention)
    return intervention


@pytest.fixture()
def separate_intervention(db_session, make_intervention, tenant, manager, provider, provider_b):
    """Deux prestataires assignés en mode séparé, chacun avec ses instructions"""
    intervention = make_intervention(tenant)
    InterventionService.assign_multiple_providers(
        db_session, intervention.id, [provider.id, provider_b.id], AssignmentMode.separate, manager,
        provider_instructions={provider.id: "Couper l'eau au compteur", provider_b.id: "Code portail 4521"}
    )
    db_session.refresh(intervention)
    return intervention


@pytest.fixture()
def slot_input():
    def _slot(days_ahead, start_hour=9, duration_hours=2):
        return schemas.TimeSlotIn(
            slot_date=date.today() + timedelta(days=days_ahead),
            start_time=time(start_hour, 0),
            end_time=time(start_hour + duration_hours, 0),
        )
    return _slot


@pytest.fixture()
def client(db_session):
    from app_config import AppConfigurator

    app = AppConfigurator.create_app(create_tables=False)
    state = {"user": None}

    def override_get_db():
        yield db_session

    def override_get_current_user():
        return state["user"]

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user

    test_client = TestClient(app)

    def login_as(user):
        state["user"] = user
        return test_client

    test_client.login_as = login_as
    yield test_client
    app.dependency_overrides.clear()
