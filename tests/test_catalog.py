import pytest
from unittest.mock import AsyncMock, patch

from transcodeops.api.services.catalog_service import CatalogService
from transcodeops.worker.errors import ConflictError, NotFoundError, ValidationError
from transcodeops.worker.ffmpeg.target import Target
from transcodeops.worker.rules.models import Criteria, CriteriaKey, CriteriaType, Workflow


@pytest.fixture
def catalog():
    return CatalogService()


class TestCatalogService:

    @pytest.mark.unit
    def test_media_lookup(self, catalog, sample_media):
        catalog.add_media(sample_media)

        assert catalog.get_media("media_123") is sample_media
        assert catalog.list_media() == [sample_media]
        with pytest.raises(NotFoundError):
            catalog.get_media("missing")

    @pytest.mark.unit
    def test_target_labels_are_unique(self, catalog, sample_target):
        catalog.add_target(sample_target)

        with pytest.raises(ConflictError):
            catalog.add_target(Target(label=sample_target.label, extension="mkv"))

        # Replacing the same target is fine
        catalog.add_target(sample_target.model_copy(update={"extension": "mov"}))
        assert catalog.get_target("target_h264").extension == "mov"

    @pytest.mark.unit
    def test_workflow_criteria_linked_to_workflow(self, catalog):
        workflow = catalog.add_workflow(Workflow(
            label="HEVC sources",
            criteria=[Criteria(key=CriteriaKey.video_codec, type=CriteriaType.equals, value="hevc")],
        ))

        assert workflow.criteria[0].workflow_id == workflow.id
        assert catalog.get_workflow(workflow.id) == workflow

    @pytest.mark.unit
    def test_illegal_workflow_not_stored(self, catalog):
        with pytest.raises(ValidationError):
            catalog.add_workflow(Workflow(
                label="Broken",
                criteria=[Criteria(key=CriteriaKey.duration, type=CriteriaType.matches, value="1.*")],
            ))
        assert catalog.workflows() == []

    @pytest.mark.unit
    async def test_probe_and_add(self, catalog, sample_media):
        with patch("transcodeops.api.services.catalog_service.probe_media",
                   AsyncMock(return_value=sample_media)) as probe:
            media = await catalog.probe_and_add("/media/movie.mkv", "Big Buck Bunny")

        assert probe.await_args.args[1] == "/media/movie.mkv"
        assert catalog.get_media(media.id) is sample_media
