"""Application tests for the cinema catalogue, ranking and favorites."""

import pytest

from cinemarank.exceptions import NotFound, ValidationError
from cinemarank.schemas import CinemaIn


def _uniform(value):
    return {"screen": value, "picture": value, "sound": value, "seat": value}


@pytest.fixture
def catalogue(services):
    return services.cinemas


@pytest.fixture
def cinemas(catalogue, cinema):
    catalogue.add_cinema(CinemaIn(
        id="lotte-worldtower",
        name="롯데시네마 월드타워",
        address="서울 송파구 올림픽로 300",
        lat=37.5133,
        lng=127.1042,
        tags=["SUPER PLEX", "4DX"],
    ))
    catalogue.add_cinema(CinemaIn(
        id="mega-haeundae",
        name="메가박스 해운대",
        address="부산 해운대구 해운대로 620",
        lat=35.1631,
        lng=129.1636,
        tags=["DOLBY CINEMA"],
    ))
    catalogue.add_cinema(CinemaIn(id="no-coords", name="씨네Q 경주", address="경북 경주시", tags=[]))
    return catalogue


class TestAddCinema:
    def test_brand_and_region_inferred(self, cinema):
        assert cinema.brand == "CGV"
        assert cinema.region == "서울"
        assert cinema.tags == ["IMAX", "4DX", "SCREENX"]

    def test_tags_cleaned_and_deduplicated(self, catalogue):
        out = catalogue.add_cinema(CinemaIn(id="c1", name="x", tags=[" IMAX ", "IMAX", "", "4DX"]))
        assert out.tags == ["IMAX", "4DX"]

    def test_add_again_replaces(self, catalogue, cinema):
        catalogue.add_cinema(CinemaIn(id=cinema.id, name="CGV 용산", tags=["IMAX"]))
        assert catalogue.get_cinema(cinema.id).tags == ["IMAX"]
        assert len(catalogue.list_cinemas()) == 1


class TestLookup:
    def test_get_unknown_cinema(self, catalogue):
        with pytest.raises(NotFound):
            catalogue.get_cinema("nowhere")
        assert catalogue.find_cinema("nowhere") is None

    def test_require_tag(self, catalogue, cinema):
        assert catalogue.require_tag(cinema.id, "IMAX").id == cinema.id
        with pytest.raises(NotFound):
            catalogue.require_tag(cinema.id, "DOLBY CINEMA")


class TestListCinemas:
    def test_sorted_by_name(self, cinemas):
        names = [c.name for c in cinemas.list_cinemas()]
        assert names == sorted(names)
        assert len(names) == 4

    def test_filter_by_brand(self, cinemas):
        assert [c.id for c in cinemas.list_cinemas(brand="메가박스")] == ["mega-haeundae"]

    def test_filter_by_region(self, cinemas):
        assert {c.id for c in cinemas.list_cinemas(region="서울")} == {"cgv-yongsan", "lotte-worldtower"}
        assert {c.id for c in cinemas.list_cinemas(region="경상")} == {"no-coords", "mega-haeundae"}

    def test_unknown_filter_rejected(self, cinemas):
        with pytest.raises(ValidationError):
            cinemas.list_cinemas(brand="Cinemark")
        with pytest.raises(ValidationError):
            cinemas.list_cinemas(region="Tokyo")


class TestNearby:
    def test_within_radius_nearest_first(self, cinemas):
        found = cinemas.nearby(37.5298, 126.9648, radius_m=20000)
        assert [c.id for c in found] == ["cgv-yongsan", "lotte-worldtower"]
        assert found[0].distance_km == pytest.approx(0.0)
        assert 11 < found[1].distance_km < 14

    def test_small_radius(self, cinemas):
        assert [c.id for c in cinemas.nearby(37.5298, 126.9648, radius_m=10000)] == ["cgv-yongsan"]

    @pytest.mark.parametrize("lat,lng", [(91, 0), (0, 181), (float("nan"), 0)])
    def test_bad_position(self, cinemas, lat, lng):
        with pytest.raises(ValidationError):
            cinemas.nearby(lat, lng)

    def test_bad_radius(self, cinemas):
        with pytest.raises(ValidationError):
            cinemas.nearby(37.5, 127.0, radius_m=0)


class TestRanking:
    def test_best_average_first(self, cinemas, store):
        store.upsert_review("cgv-yongsan", "IMAX", "a", _uniform(4.0))
        store.upsert_review("cgv-yongsan", "IMAX", "b", _uniform(4.5))
        store.upsert_review("lotte-worldtower", "SUPER PLEX", "a", _uniform(4.5))
        store.upsert_review("mega-haeundae", "DOLBY CINEMA", "a", _uniform(4.5))
        store.upsert_review("mega-haeundae", "DOLBY CINEMA", "b", _uniform(4.5))
        store.upsert_review("cgv-yongsan", "4DX", "a", _uniform(2.0))

        ranked = cinemas.ranking()
        assert [(r.cinema_id, r.tag) for r in ranked] == [
            ("mega-haeundae", "DOLBY CINEMA"),
            ("lotte-worldtower", "SUPER PLEX"),
            ("cgv-yongsan", "IMAX"),
            ("cgv-yongsan", "4DX"),
        ]
        assert ranked[0].count == 2
        assert ranked[0].cinema_name == "메가박스 해운대"

    def test_limit_and_empty_tags_skipped(self, cinemas, store):
        store.upsert_review("cgv-yongsan", "IMAX", "a", _uniform(4.0))
        store.upsert_review("cgv-yongsan", "4DX", "a", _uniform(3.0))
        store.delete_review("cgv-yongsan", "4DX", "a")
        assert [r.tag for r in cinemas.ranking()] == ["IMAX"]
        assert len(cinemas.ranking(limit=1)) == 1

    def test_bad_limit(self, cinemas):
        with pytest.raises(ValidationError):
            cinemas.ranking(limit=0)


class TestFavorites:
    def test_toggle_on_and_off(self, services, cinema):
        book = services.favorites
        assert book.toggle("viewer", cinema.id).favorite is True
        assert book.is_favorite("viewer", cinema.id)
        assert book.toggle("viewer", cinema.id).favorite is False
        assert not book.is_favorite("viewer", cinema.id)

    def test_list_in_bookmark_order(self, services, cinemas):
        book = services.favorites
        book.toggle("viewer", "mega-haeundae")
        book.toggle("viewer", "cgv-yongsan")
        book.toggle("other", "lotte-worldtower")
        assert [c.id for c in book.list_favorites("viewer")] == ["mega-haeundae", "cgv-yongsan"]

    def test_remove(self, services, cinema):
        book = services.favorites
        book.toggle("viewer", cinema.id)
        assert book.remove("viewer", cinema.id) is True
        assert book.remove("viewer", cinema.id) is False
        assert book.list_favorites("viewer") == []
