from math import isfinite
from typing import List, Optional, Sequence, Tuple

import structlog
from pydantic import ValidationError

from mythilens.models.dto import Coordinate, RankedSite, Site
from mythilens.utils.geo import haversine, is_valid_coordinate

logger = structlog.get_logger(__name__)

class InvalidCoordinateError(ValueError):
    """The user's own position is missing, non-finite or out of range."""

class MissingScoreError(ValueError):
    """An externally supplied score the decision depends on is absent."""

def make_coordinate(lat, lng) -> Coordinate:
    """Build a Coordinate, raising InvalidCoordinateError instead of clamping."""
    if not is_valid_coordinate(lat, lng):
        raise InvalidCoordinateError(f"invalid coordinate: lat={lat!r}, lng={lng!r}")
    try:
        return Coordinate(lat=lat, lng=lng)
    except ValidationError as e:
        raise InvalidCoordinateError(str(e)) from e

class DistanceRanker:
    """
    Orders candidate sites around a user position.

    `rank` blends normalized distance with popularity so that a very popular
    site a little farther away can beat a mediocre one next door.
    `within_radius` is the plain nearest-first filter used for sites the
    user already knows about.
    """

    DISTANCE_WEIGHT = 0.4
    POPULARITY_WEIGHT = 0.6
    MAX_POPULARITY = 10.0

    @staticmethod
    def distance_km(a: Coordinate, b: Coordinate) -> float:
        return haversine(a.lat, a.lng, b.lat, b.lng)

    @classmethod
    def score(cls, distance_km: float, popularity_score: float, search_radius_km: float) -> float:
        return (
            (distance_km / search_radius_km) * cls.DISTANCE_WEIGHT
            + (cls.MAX_POPULARITY - popularity_score) * cls.POPULARITY_WEIGHT
        )

    def rank(
        self,
        user_coord: Coordinate,
        candidates: Sequence[Site],
        search_radius_km: float,
    ) -> List[RankedSite]:
        """
        Rank candidates by composite score, best first.

        Candidates without a usable coordinate are dropped. A candidate with
        no popularity score fails the whole call with MissingScoreError.
        Ties keep input order.
        """
        self._check_user_coord(user_coord)
        self._check_radius(search_radius_km)

        ranked: List[RankedSite] = []
        for site, dist_km in self._locate(user_coord, candidates):
            if site.popularity_score is None:
                raise MissingScoreError(f"site {site.id!r} has no popularity_score")
            ranked.append(
                RankedSite(
                    site=site,
                    distance_km=dist_km,
                    rank_score=self.score(dist_km, site.popularity_score, search_radius_km),
                )
            )

        return sorted(ranked, key=lambda r: r.rank_score)

    def within_radius(
        self,
        user_coord: Coordinate,
        candidates: Sequence[Site],
        search_radius_km: float,
    ) -> List[RankedSite]:
        """Sites no farther than search_radius_km, nearest first."""
        self._check_user_coord(user_coord)
        self._check_radius(search_radius_km)

        nearby = [
            RankedSite(site=site, distance_km=dist_km, rank_score=dist_km / search_radius_km)
            for site, dist_km in self._locate(user_coord, candidates)
            if dist_km <= search_radius_km
        ]
        return sorted(nearby, key=lambda r: r.distance_km)

    def _locate(self, user_coord: Coordinate, candidates: Sequence[Site]) -> List[Tuple[Site, float]]:
        located: List[Tuple[Site, float]] = []
        dropped = 0
        for site in candidates:
            site_coord = self._site_coordinate(site)
            if site_coord is None:
                dropped += 1
                continue
            located.append((site, self.distance_km(user_coord, site_coord)))
        if dropped:
            logger.debug("ranker_dropped_candidates", dropped=dropped, kept=len(located))
        return located

    @staticmethod
    def _site_coordinate(site: Site) -> Optional[Coordinate]:
        if not is_valid_coordinate(site.latitude, site.longitude):
            return None
        return Coordinate(lat=site.latitude, lng=site.longitude)

    @staticmethod
    def _check_user_coord(user_coord: Coordinate) -> None:
        # model_construct() skips validation, so re-check here
        if user_coord is None or not is_valid_coordinate(user_coord.lat, user_coord.lng):
            raise InvalidCoordinateError(f"invalid user coordinate: {user_coord!r}")

    @staticmethod
    def _check_radius(search_radius_km: float) -> None:
        if (
            isinstance(search_radius_km, bool)
            or not isinstance(search_radius_km, (int, float))
            or not isfinite(search_radius_km)
            or search_radius_km <= 0
        ):
            raise ValueError(f"search_radius_km must be a positive number, got {search_radius_km!r}")
