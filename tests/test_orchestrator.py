from __future__ import annotations

from collections import Counter

import pytest

from fleetstrap.exceptions import (
    ConfigurationError,
    ImageResolutionError,
    ProvisioningError,
    ReleaseSourceError,
)
from fleetstrap.orchestrator import Converger, validate_launch_spec
from fleetstrap.releases import StaticReleases
from fleetstrap.types import LaunchSpec, SessionState
from tests.conftest import client_error

pytestmark = [pytest.mark.xdist_group("unit")]


def spec(count: int = 3, **overrides) -> LaunchSpec:
    fields = {
        "keypair_name": "coreos",
        "user_data": "#cloud-config\n",
        "instance_type": "t1.micro",
        "count": count,
    }
    fields.update(overrides)
    return LaunchSpec(**fields)


@pytest.fixture
def cluster(make_region, releases):
    """Three regions that all carry release 367.1.0, resolved."""
    regions = [make_region(name, releases=["367.1.0"]) for name in ("A", "B", "C")]
    converger = Converger(regions, releases("367.1.0"))
    converger.resolve_cluster_image()
    return converger


class TestConstruction:
    def test_requires_a_region(self, releases):
        with pytest.raises(ConfigurationError, match="at least one region"):
            Converger([], releases("1.0"))

    def test_rejects_duplicate_regions(self, make_region, releases):
        with pytest.raises(ConfigurationError, match="duplicate regions: A"):
            Converger([make_region("A"), make_region("A")], releases("1.0"))

    def test_starts_unconfigured(self, make_region, releases):
        converger = Converger([make_region("A")], releases("1.0"))
        assert converger.state is SessionState.UNCONFIGURED
        assert converger.release is None
        assert converger.images == {}


class TestResolveClusterImage:
    def test_commits_newest_release_present_everywhere(self, make_region, releases):
        regions = [
            make_region("us-east-1", releases=["367.1.0", "361.0.0"]),
            make_region("eu-west-1", releases=["367.1.0", "361.0.0"]),
        ]
        converger = Converger(regions, releases("367.1.0", "361.0.0"))

        assert converger.resolve_cluster_image() == "367.1.0"

        assert converger.state is SessionState.IMAGE_RESOLVED
        assert converger.images == {
            "us-east-1": regions[0].image,
            "eu-west-1": regions[1].image,
        }
        assert regions[0].image.image_id == "ami-us-east-1-367.1.0"
        assert regions[1].image.image_id == "ami-eu-west-1-367.1.0"

    def test_skips_release_missing_in_one_region(self, make_region, releases):
        regions = [
            make_region("us-east-1", releases=["367.1.0", "361.0.0"]),
            make_region("ap-southeast-2", releases=["361.0.0"]),
        ]
        converger = Converger(regions, releases("367.1.0", "361.0.0"))

        assert converger.resolve_cluster_image() == "361.0.0"
        assert all(r.image.name == "CoreOS-alpha-361.0.0-pv" for r in regions)

    def test_partial_match_never_touches_regions(self, make_region, releases):
        regions = [
            make_region("us-east-1", releases=["367.1.0"]),
            make_region("eu-west-1"),
        ]
        converger = Converger(regions, releases("367.1.0"))

        with pytest.raises(ImageResolutionError):
            converger.resolve_cluster_image()

        assert all(not r.has_image for r in regions)
        assert converger.state is SessionState.UNCONFIGURED

    def test_failure_reports_releases_and_missing_regions(self, make_region, releases):
        regions = [
            make_region("us-east-1", releases=["367.1.0"]),
            make_region("eu-west-1", releases=["361.0.0"]),
        ]
        converger = Converger(regions, releases("367.1.0", "361.0.0"))

        with pytest.raises(ImageResolutionError, match="367.1.0, 361.0.0") as exc:
            converger.resolve_cluster_image()

        assert exc.value.releases == ("367.1.0", "361.0.0")
        assert exc.value.missing == {
            "367.1.0": ("eu-west-1",),
            "361.0.0": ("us-east-1",),
        }

    def test_empty_release_list(self, make_region, releases):
        converger = Converger([make_region("A", releases=["1.0"])], releases())

        with pytest.raises(ImageResolutionError, match="none") as exc:
            converger.resolve_cluster_image()

        assert exc.value.releases == ()

    def test_idempotent(self, make_region, releases):
        region = make_region("A", releases=["1.0"])
        converger = Converger([region], releases("1.0"))

        converger.resolve_cluster_image()
        converger.resolve_cluster_image()

        assert len(region.ec2.calls_to("describe_images")) == 1

    def test_stops_at_first_full_match(self, make_region, releases):
        region = make_region("A", releases=["3.0", "2.0", "1.0"])
        converger = Converger([region], releases("3.0", "2.0", "1.0"))

        converger.resolve_cluster_image()

        assert len(region.ec2.calls_to("describe_images")) == 1

    def test_provider_failure_propagates(self, make_region, releases):
        regions = [
            make_region("A", releases=["1.0"]),
            make_region("B", fail={"describe_images": client_error("AuthFailure", "DescribeImages")}),
        ]
        converger = Converger(regions, releases("1.0"))

        with pytest.raises(ProvisioningError) as exc:
            converger.resolve_cluster_image()

        assert exc.value.region == "B"
        assert not regions[0].has_image

    def test_release_source_failure_propagates(self, make_region):
        class Broken:
            def releases(self):
                raise ReleaseSourceError("rate limited")

        converger = Converger([make_region("A")], Broken())

        with pytest.raises(ReleaseSourceError):
            converger.resolve_cluster_image()

    def test_sequential_mode_gives_same_answer(self, make_region, releases):
        regions = [make_region(n, releases=["2.0", "1.0"]) for n in ("A", "B", "C")]
        regions[2] = make_region("C", releases=["1.0"])
        converger = Converger(regions, releases("2.0", "1.0"), concurrency=1)

        assert converger.resolve_cluster_image() == "1.0"

    def test_pinned_versions_with_marker(self, make_region):
        converger = Converger([make_region("A", releases=["367.1.0"])], StaticReleases(["v367.1.0"]))
        assert converger.resolve_cluster_image() == "367.1.0"


class TestPlan:
    def test_round_robin_in_region_order(self, cluster):
        assert cluster.plan(5) == ["A", "B", "C", "A", "B"]

    def test_zero(self, cluster):
        assert cluster.plan(0) == []


class TestLaunchAll:
    def test_distributes_round_robin(self, cluster):
        instances = cluster.launch_all(spec(10))

        assert len(instances) == 10
        assert Counter(i.region_name for i in instances) == {"A": 4, "B": 3, "C": 3}
        assert cluster.summary() == {"A": 4, "B": 3, "C": 3}
        assert cluster.state is SessionState.LAUNCHED

    def test_fewer_instances_than_regions(self, cluster):
        cluster.launch_all(spec(2))
        assert cluster.summary() == {"A": 1, "B": 1, "C": 0}
        assert cluster.regions[2].ec2.calls_to("run_instances") == []
        assert cluster.regions[2].ec2.calls_to("create_security_group") == []

    def test_every_instance_uses_the_region_image(self, cluster):
        cluster.launch_all(spec(6))

        for region in cluster.regions:
            for call in region.ec2.calls_to("run_instances"):
                assert call["ImageId"] == region.image.image_id
                assert call["MinCount"] == call["MaxCount"] == 1
                assert call["KeyName"] == "coreos"

    def test_security_group_created_once_per_region(self, cluster):
        cluster.launch_all(spec(9))

        for region in cluster.regions:
            assert len(region.ec2.calls_to("create_security_group")) == 1
            assert len(region.ec2.calls_to("authorize_security_group_ingress")) == 1

    def test_sequential_mode_keeps_pointer_order(self, make_region, releases):
        regions = [make_region(n, releases=["1.0"]) for n in ("A", "B")]
        converger = Converger(regions, releases("1.0"), concurrency=1)
        converger.resolve_cluster_image()

        converger.launch_all(spec(4))

        assert converger.summary() == {"A": 2, "B": 2}
        for region in regions:
            ids = [i.instance_id for i in region.instances]
            assert ids == sorted(ids)

    def test_zero_count_launches_nothing(self, cluster):
        assert cluster.launch_all(spec(0)) == []

        assert cluster.state is SessionState.LAUNCHED
        for region in cluster.regions:
            assert region.ec2.calls_to("run_instances") == []
            assert region.ec2.calls_to("create_security_group") == []

    def test_requires_resolved_image(self, make_region, releases):
        region = make_region("A", releases=["1.0"])
        converger = Converger([region], releases("1.0"))

        with pytest.raises(ImageResolutionError):
            converger.launch_all(spec(1))

        assert region.ec2.calls == []

    def test_cannot_launch_twice(self, cluster):
        cluster.launch_all(spec(1))

        with pytest.raises(ConfigurationError, match="cannot launch"):
            cluster.launch_all(spec(1))

    @pytest.mark.parametrize(
        "overrides",
        [
            {"keypair_name": ""},
            {"user_data": ""},
            {"instance_type": ""},
            {"count": -1},
        ],
    )
    def test_invalid_spec_rejected_before_any_call(self, cluster, overrides):
        before = [len(r.ec2.calls) for r in cluster.regions]

        with pytest.raises(ConfigurationError):
            cluster.launch_all(spec(**{"count": 3, **overrides}))

        assert [len(r.ec2.calls) for r in cluster.regions] == before
        assert cluster.state is SessionState.IMAGE_RESOLVED

    def test_failure_keeps_partial_fleet(self, make_region, releases):
        regions = [
            make_region("A", releases=["1.0"]),
            make_region(
                "B",
                releases=["1.0"],
                fail={"run_instances": client_error("InstanceLimitExceeded", "RunInstances")},
            ),
        ]
        converger = Converger(regions, releases("1.0"))
        converger.resolve_cluster_image()

        with pytest.raises(ProvisioningError, match="InstanceLimitExceeded") as exc:
            converger.launch_all(spec(6))

        assert exc.value.region == "B"
        assert converger.state is SessionState.LAUNCHED
        # the failing round still completes in the healthy region, later rounds never start
        assert converger.summary() == {"A": 1, "B": 0}
        assert converger.terminate_all() == [regions[0].instances[0].instance_id]


class TestTerminateAll:
    def test_terminates_exactly_the_launched_set(self, cluster):
        launched = cluster.launch_all(spec(5))

        terminated = cluster.terminate_all()

        assert sorted(terminated) == sorted(i.instance_id for i in launched)
        assert cluster.state is SessionState.TERMINATED
        for region in cluster.regions:
            assert region.ec2.terminated == [i.instance_id for i in region.instances]

    def test_one_call_per_instance_in_creation_order(self, cluster):
        cluster.launch_all(spec(4))
        cluster.terminate_all()

        region = cluster.regions[0]
        assert region.ec2.calls_to("terminate_instances") == [
            {"InstanceIds": [i.instance_id]} for i in region.instances
        ]

    def test_noop_before_launch(self, cluster):
        assert cluster.terminate_all() == []

        assert cluster.state is SessionState.IMAGE_RESOLVED
        for region in cluster.regions:
            assert region.ec2.calls_to("terminate_instances") == []

    def test_second_call_is_noop(self, cluster):
        cluster.launch_all(spec(3))
        cluster.terminate_all()

        assert cluster.terminate_all() == []
        assert sum(len(r.ec2.calls_to("terminate_instances")) for r in cluster.regions) == 3

    def test_after_zero_launch(self, cluster):
        cluster.launch_all(spec(0))
        assert cluster.terminate_all() == []
        assert cluster.state is SessionState.TERMINATED


class TestValidateLaunchSpec:
    def test_accepts_complete_spec(self):
        validate_launch_spec(spec(0))

    def test_names_the_missing_input(self):
        with pytest.raises(ConfigurationError, match="keypair"):
            validate_launch_spec(spec(keypair_name=""))
