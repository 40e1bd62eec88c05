import pytest
import threading
import time
import yaml
from pathlib import Path
from cti.config.models import AppConfig
from cti.infrastructure.event_bus import EventBus
from cti.infrastructure.volumes import VolumeInfo, VolumeResolver

# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def sample_config(tmp_path):
    """Returns an AppConfig whose every path lives under tmp_path."""
    return AppConfig(
        general={
            "drive_label": "OM SYSTEM",
            "raw_extensions": [".ORF"],
            "output_directory": str(tmp_path / "output"),
            "state_path": str(tmp_path / "state" / "state.json"),
            "workers": 2,
            "skip_upload": False,
        },
        rawtherapee={"jpeg_quality": 90},
        immich={
            "server_url": "https://immich.example.com",
            "api_key": "secret-key",
        },
    )

@pytest.fixture
def config_yaml_path(tmp_path):
    """Creates a temporary YAML config file."""
    conf_dir = tmp_path / "conf"
    conf_dir.mkdir()
    conf_file = conf_dir / "config.yaml"

    content = {
        'general': {
            'drive_label': 'EOS_DIGITAL',
            'raw_extensions': ['cr3', '.CR2'],
            'workers': 3,
            'limit': 10,
            'upload_camera_jpgs': False,
        },
        'rawtherapee': {
            'jpeg_quality': 85,
        },
        'immich': {
            'server_url': 'https://photos.example.com',
            'api_key': 'abc123',
            'album': 'Card',
            'tags': ['camera'],
        },
    }

    with open(conf_file, 'w') as f:
        yaml.dump(content, f)

    return conf_file

# ============================================================================
# EventBus Fixtures
# ============================================================================

@pytest.fixture
def event_bus():
    """Returns a fresh EventBus instance."""
    return EventBus()

# ============================================================================
# Card / File System Fixtures
# ============================================================================

@pytest.fixture
def card_dir(tmp_path):
    """Creates a fake camera card: two RAW files and one camera JPEG."""
    card = tmp_path / "card"
    dcim = card / "DCIM" / "100OMSYS"
    dcim.mkdir(parents=True)
    (dcim / "A.ORF").write_bytes(b"raw A" * 10)
    (dcim / "B.ORF").write_bytes(b"raw B" * 10)
    (dcim / "A.JPG").write_bytes(b"jpg A" * 10)
    return card


class FakeVolumeResolver(VolumeResolver):
    def __init__(self, volumes):
        self.volumes = volumes

    def list_all(self):
        return list(self.volumes)


@pytest.fixture
def volume_resolver(card_dir):
    """Resolver that only knows the fake card, labelled OM SYSTEM."""
    return FakeVolumeResolver([VolumeInfo(path=card_dir, label="OM SYSTEM")])

# ============================================================================
# Fake converters
# ============================================================================

class FakeConverter:
    """Writes <stem>.jpg into output_dir; names listed in fail_names raise."""

    def __init__(self, output_dir: Path, fail_names=(), delay: float = 0.0):
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.fail_names = set(fail_names)
        self.delay = delay
        self.calls = []
        self._lock = threading.Lock()
        self._in_flight = 0
        self.high_water_mark = 0

    def convert(self, input_path: Path) -> Path:
        input_path = Path(input_path)
        with self._lock:
            self.calls.append(input_path.name)
            self._in_flight += 1
            self.high_water_mark = max(self.high_water_mark, self._in_flight)
        try:
            if self.delay:
                time.sleep(self.delay)
            if input_path.name in self.fail_names:
                raise RuntimeError(f"cannot decode {input_path.name}")
            output = self.output_dir / f"{input_path.stem}.jpg"
            output.write_bytes(b"processed")
            return output
        finally:
            with self._lock:
                self._in_flight -= 1

    def check_available(self):
        pass


@pytest.fixture
def fake_converter(tmp_path):
    return FakeConverter(tmp_path / "output")


@pytest.fixture
def make_converter(tmp_path):
    """Factory for FakeConverter with failures or artificial latency."""
    def _make(fail_names=(), delay=0.0, output_dir=None):
        return FakeConverter(output_dir or (tmp_path / "output"), fail_names=fail_names, delay=delay)
    return _make

# ============================================================================
# Markers
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
