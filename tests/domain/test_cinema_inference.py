"""Tests for brand/region inference and distance math."""

import pytest

from cinemarank.models import Cinema
from cinemarank.services.cinema_service import cinema_out, haversine_km, infer_brand, infer_region


class TestInferBrand:
    @pytest.mark.parametrize(
        "name,brand",
        [
            ("CGV 용산아이파크몰", "CGV"),
            ("cgv Gangnam", "CGV"),
            ("롯데시네마 월드타워", "롯데시네마"),
            ("Lotte Cinema Busan", "롯데시네마"),
            ("메가박스 코엑스", "메가박스"),
            ("MEGABOX Haeundae", "메가박스"),
            ("씨네Q 신도림", "기타"),
            ("", "기타"),
            (None, "기타"),
        ],
    )
    def test_brand_from_name(self, name, brand):
        assert infer_brand(name) == brand


class TestInferRegion:
    @pytest.mark.parametrize(
        "address,region",
        [
            ("서울 용산구 한강대로23길 55", "서울"),
            ("서울특별시 송파구 올림픽로 300", "서울"),
            ("인천 연수구 송도동", "경기"),
            ("경기 고양시 일산동구", "경기"),
            ("대전 유성구", "충청"),
            ("광주 서구", "전라"),
            ("강원 춘천시", "강원"),
            ("부산 해운대구 센텀남대로 35", "경상"),
            ("  울산 남구", "경상"),
            ("제주 제주시", "기타"),
            ("", "기타"),
        ],
    )
    def test_region_from_address(self, address, region):
        assert infer_region(address) == region


class TestHaversine:
    def test_zero_distance(self):
        assert haversine_km(37.5, 127.0, 37.5, 127.0) == 0.0

    def test_one_degree_of_latitude(self):
        assert haversine_km(0.0, 0.0, 1.0, 0.0) == pytest.approx(111.19, abs=0.01)

    def test_seoul_to_busan(self):
        assert haversine_km(37.5665, 126.9780, 35.1796, 129.0756) == pytest.approx(325, abs=5)

    def test_symmetric(self):
        a = haversine_km(37.5298, 126.9648, 37.5133, 127.1042)
        b = haversine_km(37.5133, 127.1042, 37.5298, 126.9648)
        assert a == pytest.approx(b)


class TestCinemaOut:
    def test_missing_fields_are_coerced(self):
        out = cinema_out(Cinema(id="c1", name=None, address=None, lat="bad", lng=None, tags=None))
        assert out.name == ""
        assert out.address == ""
        assert out.lat is None
        assert out.tags == []
        assert out.brand == "기타"
        assert out.region == "기타"

    def test_stored_brand_wins_over_inference(self):
        out = cinema_out(Cinema(id="c2", name="CGV 강남", address="서울 강남구", brand="메가박스", tags=[]))
        assert out.brand == "메가박스"
        assert out.region == "서울"

    def test_unknown_stored_brand_falls_back_to_inference(self):
        out = cinema_out(Cinema(id="c3", name="CGV 강남", address="", brand="Cinemark", tags=[]))
        assert out.brand == "CGV"
