"""
SIGNATURE8 CRM — Stage mapping tests
Tests: ordre canonique, table d'alias totale, labels, progression, records.
Run: cd backend && pytest tests/test_stage_mapping.py -v
"""

import pytest
import sys
from datetime import datetime, timezone
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from models import (
    LEGACY_STAGE_ALIASES,
    PipelineRecord,
    PipelineStage,
    STAGE_ALIASES,
    STAGE_ORDER,
    bucket_aliases,
    get_stage_label,
    get_stage_progress,
    resolve_bucket,
    resolve_stage,
    validate_stage,
)


class TestCanonicalStages:

    def test_pipeline_order(self):
        assert [s.value for s in STAGE_ORDER] == [
            "qualifie", "prise_de_besoin", "acompte_recu", "conception",
            "devis_negociation", "accepte", "refuse", "premier_depot",
            "projet_en_cours", "facture_reglee", "livraison_termine",
        ]

    def test_every_canonical_resolves_to_itself(self):
        for stage in PipelineStage:
            assert resolve_stage(stage.value) is stage
            assert resolve_stage(stage) is stage


class TestAliases:

    @pytest.mark.parametrize("alias,expected", [
        ("chantier", "projet_en_cours"),
        ("perdu", "refuse"),
        ("nouveau", "qualifie"),
        ("acompte_verse", "acompte_recu"),
        ("en_conception", "conception"),
        ("en_validation", "devis_negociation"),
        ("en_chantier", "projet_en_cours"),
        ("livraison", "livraison_termine"),
        ("termine", "livraison_termine"),
        ("annule", "refuse"),
        ("suspendu", "refuse"),
    ])
    def test_legacy_alias(self, alias, expected):
        assert resolve_stage(alias).value == expected

    def test_normalization(self):
        assert resolve_stage("  Conception ") is PipelineStage.CONCEPTION

    @pytest.mark.parametrize("value", ["prospection", "", None, "unknown"])
    def test_unrecognized(self, value):
        assert resolve_stage(value) is None
        assert validate_stage(value) is False

    def test_each_alias_belongs_to_exactly_one_bucket(self):
        for alias in STAGE_ALIASES:
            owners = [s for s in PipelineStage if alias in bucket_aliases(s)]
            assert len(owners) == 1, f"{alias} in {owners}"

    def test_bucket_alias_sets(self):
        assert bucket_aliases(PipelineStage.REFUSE) == {"refuse", "perdu", "annule", "suspendu"}
        assert bucket_aliases(PipelineStage.PREMIER_DEPOT) == {"premier_depot"}

    def test_legacy_aliases_are_not_canonical(self):
        for alias in LEGACY_STAGE_ALIASES:
            assert resolve_bucket(alias) is None

    def test_resolve_bucket(self):
        assert resolve_bucket("accepte") is PipelineStage.ACCEPTE
        assert resolve_bucket("nowhere") is None


class TestLabels:

    def test_labels(self):
        assert get_stage_label("devis_negociation") == "Devis/Négociation"
        assert get_stage_label("en_chantier") == "En réalisation"
        assert get_stage_label(PipelineStage.PREMIER_DEPOT) == "1er Dépôt"
        assert get_stage_label("mystery") == "mystery"

    def test_progress(self):
        assert get_stage_progress("qualifie") == 10
        assert get_stage_progress("termine") == 100
        assert get_stage_progress("mystery") == 0


class TestPipelineRecord:

    def test_camel_case_payload(self):
        record = PipelineRecord.model_validate({
            "id": "c1",
            "statutProjet": "chantier",
            "nomProjet": "Villa X",
            "derniereMaj": "2026-01-10T10:00:00Z",
            "architecteAssigne": "Tazi",
            "typeProjet": "villa",
            "budget": 120000,
        })
        assert record.stage == "chantier"
        assert record.canonical_stage() is PipelineStage.PROJET_EN_COURS
        assert record.project_label == "Villa X"
        assert record.last_updated_at == datetime(2026, 1, 10, 10, 0, tzinfo=timezone.utc)
        assert record.architecte_assigne == "Tazi"
        assert record.type_projet == "villa"
        assert record.model_extra == {"budget": 120000}

    def test_project_label_gating(self):
        assert not PipelineRecord(id="a", stage="qualifie").has_project_label()
        assert not PipelineRecord(id="a", stage="qualifie", project_label="  ").has_project_label()
        assert PipelineRecord(id="a", stage="qualifie", project_label="Riad").has_project_label()

    def test_naive_timestamp_is_utc(self):
        record = PipelineRecord(id="a", stage="qualifie", last_updated_at="2026-01-10T10:00:00")
        assert record.last_updated_at.tzinfo is not None

    def test_opportunity_backed(self):
        record = PipelineRecord.model_validate({"id": "a", "isContact": True, "opportunityId": "o1"})
        assert record.is_opportunity_backed()
        assert not PipelineRecord(id="b", is_contact=True).is_opportunity_backed()
