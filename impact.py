"""
=============================================================================
IMPACT.PY — Impact partners
=============================================================================
Every completion "buys" some environmental impact from a partner API.

Contract shared by every partner:
  create_impact(ImpactRequest(action, amount), description) → ImpactResult

  - NEVER raises for HTTP errors or network failures. Those come back as
    ImpactResult(success=False, error="...").
  - success=False is not fatal for the caller: the habit is completed anyway.

We speak ONE impact vocabulary (models.ImpactAction). Partners with their own
vocabulary translate at the edge, inside their adapter.

Partners:
  greenspark → verifies the project catalogue for the impact type
  oneclick   → 1ClickImpact, generic multi-action API
  ecologi    → trees only
  sandbox    → no network, always succeeds (default for development)
"""

import os
import logging
import uuid
from datetime import datetime
from typing import Optional

import httpx
from pydantic import BaseModel

from models import ImpactAction

logger = logging.getLogger("greenstreak.impact")

# ─────────────────────────────────────────────────────────────────────────────
# CONFIGURATION
# ─────────────────────────────────────────────────────────────────────────────

IMPACT_PARTNER = os.getenv("IMPACT_PARTNER", "sandbox")
GREENSPARK_API_KEY = os.getenv("GREENSPARK_API_KEY", "")
GREENSPARK_API_URL = os.getenv("GREENSPARK_API_URL", "https://api.getgreenspark.com")
ONE_CLICK_IMPACT_API_KEY = os.getenv("ONE_CLICK_IMPACT_API_KEY", "")
ONE_CLICK_IMPACT_API_URL = os.getenv("ONE_CLICK_IMPACT_API_URL", "https://api.1clickimpact.com/v1")
ECOLOGI_API_TOKEN = os.getenv("ECOLOGI_API_TOKEN", "")
ECOLOGI_API_URL = os.getenv("ECOLOGI_API_URL", "https://public.ecologi.com")
IMPACT_TEST_MODE = os.getenv("IMPACT_TEST_MODE", "true").lower() == "true"

PARTNER_TIMEOUT_SECONDS = 15.0


# =============================================================================
# ===================== IMPACT CATALOGUE ======================================
# =============================================================================
# What each impact action means for humans: units, project, where on the map.
# coordinates → (longitude, latitude)

IMPACT_TYPES = {
    ImpactAction.plant_tree.value: {
        "name": "Plant Trees",
        "unit": "trees",
        "unit_singular": "tree",
        "verb": "planted",
        "emoji": "🌳",
        "description": "Plant real trees to combat climate change and restore forests",
        "project_name": "Kenyan Reforestation",
        "project_description": "Restoring degraded land with native tree species",
        "country": "Kenya",
        "region": "East Africa",
        "coordinates": (37.0902, -0.0236),
    },
    ImpactAction.rescue_plastic.value: {
        "name": "Rescue Plastic",
        "unit": "plastic bottles",
        "unit_singular": "plastic bottle",
        "verb": "rescued",
        "emoji": "🐋",
        "description": "Remove plastic waste from oceans and waterways",
        "project_name": "Coastal Plastic Recovery",
        "project_description": "Collecting ocean-bound plastic along the coastline",
        "country": "Mexico",
        "region": "Central America",
        "coordinates": (-87.7289, 20.6296),
    },
    ImpactAction.offset_carbon.value: {
        "name": "Offset Carbon",
        "unit": "kg of CO₂",
        "unit_singular": "kg of CO₂",
        "verb": "offset",
        "emoji": "☁️",
        "description": "Offset carbon emissions through verified projects",
        "project_name": "Amazon Forest Protection",
        "project_description": "Avoided deforestation credits in the Amazon basin",
        "country": "Brazil",
        "region": "South America",
        "coordinates": (-60.0261, -3.4653),
    },
    ImpactAction.plant_kelp.value: {
        "name": "Plant Kelp",
        "unit": "kelp plants",
        "unit_singular": "kelp plant",
        "verb": "planted",
        "emoji": "🌿",
        "description": "Restore marine ecosystems by planting kelp forests",
        "project_name": "Kelp Forest Restoration",
        "project_description": "Replanting kelp to bring back marine biodiversity",
        "country": "Indonesia",
        "region": "Southeast Asia",
        "coordinates": (115.0920, -8.4095),
    },
    ImpactAction.provide_water.value: {
        "name": "Provide Clean Water",
        "unit": "liters of clean water",
        "unit_singular": "liter of clean water",
        "verb": "provided",
        "emoji": "💧",
        "description": "Support clean water access projects in communities worldwide",
        "project_name": "Community Water Wells",
        "project_description": "Borehole maintenance for rural communities",
        "country": "Ethiopia",
        "region": "East Africa",
        "coordinates": (39.4759, 14.2681),
    },
    ImpactAction.sponsor_bees.value: {
        "name": "Sponsor Bees",
        "unit": "bees",
        "unit_singular": "bee",
        "verb": "protected",
        "emoji": "🐝",
        "description": "Create pollinator habitats and foster biodiversity",
        "project_name": "EarthLungs Pollinators",
        "project_description": "Beehives and pollinator habitats for smallholder farms",
        "country": "Kenya",
        "region": "East Africa",
        "coordinates": (34.7519, 0.0236),
    },
}


def describe_impact(action: str, amount: int) -> str:
    """'planted 2 trees', 'provided 1 liter of clean water'..."""
    info = IMPACT_TYPES.get(action)
    if info is None:
        return "created positive impact"
    unit = info["unit_singular"] if amount == 1 else info["unit"]
    return f"{info['verb']} {amount} {unit}"


def impact_emoji(action: str) -> str:
    return IMPACT_TYPES.get(action, {}).get("emoji", "🌍")


# =============================================================================
# ===================== CONTRACT ==============================================
# =============================================================================

class ImpactRequest(BaseModel):
    action: ImpactAction
    amount: int


class ImpactResult(BaseModel):
    success: bool
    impact_id: Optional[str] = None
    message: Optional[str] = None
    error: Optional[str] = None


class ImpactPartner:
    """Base adapter. Subclasses implement _create, which may raise freely."""

    name = "base"

    def create_impact(self, request: ImpactRequest, description: Optional[str] = None) -> ImpactResult:
        description = description or f"Habit completion - {request.action.value}"
        try:
            return self._create(request, description)
        except httpx.HTTPStatusError as e:
            logger.error(f"❌ {self.name}: HTTP {e.response.status_code} creating {request.action.value}: {e.response.text[:200]}")
            return ImpactResult(success=False, error=f"{self.name} API error: {e.response.status_code}")
        except httpx.HTTPError as e:
            logger.error(f"❌ {self.name}: network error creating {request.action.value}: {e}")
            return ImpactResult(success=False, error=f"Network error while contacting {self.name}")
        except ValueError as e:
            # malformed JSON bodies and unexpected payloads
            logger.error(f"❌ {self.name}: bad response creating {request.action.value}: {e}")
            return ImpactResult(success=False, error=f"Invalid response from {self.name}")

    def _create(self, request: ImpactRequest, description: str) -> ImpactResult:
        raise NotImplementedError

    def _unsupported(self, request: ImpactRequest) -> ImpactResult:
        logger.warning(f"⚠️ {self.name} does not support {request.action.value}")
        return ImpactResult(success=False, error=f"Unsupported impact action: {request.action.value}")

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=PARTNER_TIMEOUT_SECONDS)

    @staticmethod
    def _json_object(response: httpx.Response) -> dict:
        """The body as a JSON object. Anything else raises ValueError."""
        data = response.json()
        if not isinstance(data, dict):
            raise ValueError(f"expected a JSON object, got {type(data).__name__}")
        return data


# =============================================================================
# ===================== PARTNERS ==============================================
# =============================================================================

class SandboxPartner(ImpactPartner):
    """Records the impact locally. No network, always succeeds."""

    name = "sandbox"

    def _create(self, request: ImpactRequest, description: str) -> ImpactResult:
        impact_id = f"sandbox_{uuid.uuid4().hex[:12]}"
        logger.info(f"🧪 Sandbox impact: {request.amount} {request.action.value} ({description}) → {impact_id}")
        return ImpactResult(
            success=True,
            impact_id=impact_id,
            message=f"Recorded {request.amount} {request.action.value} in sandbox mode",
        )


class GreensparkPartner(ImpactPartner):
    """
    Greenspark exposes a read-only projects API in the sandbox. We check that a
    project exists for the mapped impact type and hand out a verified id.
    """

    name = "greenspark"

    IMPACT_TYPE_MAPPING = {
        ImpactAction.plant_tree: "trees",
        ImpactAction.rescue_plastic: "plastic",
        ImpactAction.offset_carbon: "carbon",
        ImpactAction.plant_kelp: "kelp",
        ImpactAction.provide_water: "water",
        ImpactAction.sponsor_bees: "bees",
    }

    def __init__(self, api_key: str = GREENSPARK_API_KEY, base_url: str = GREENSPARK_API_URL):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")

    def _create(self, request: ImpactRequest, description: str) -> ImpactResult:
        impact_type = self.IMPACT_TYPE_MAPPING.get(request.action)
        if impact_type is None:
            return self._unsupported(request)
        if not self.api_key:
            return ImpactResult(success=False, error="Greenspark API key not configured")

        with self._client() as client:
            response = client.get(
                f"{self.base_url}/v1/projects",
                headers={"x-api-key": self.api_key, "Accept": "application/json"},
            )
            response.raise_for_status()
            payload = response.json()

        projects = payload.get("data", payload) if isinstance(payload, dict) else payload
        if not isinstance(projects, list):
            return ImpactResult(
                success=False,
                error=f"Invalid API response format: expected list, got {type(projects).__name__}",
            )

        matching = [
            p for p in projects
            if isinstance(p, dict) and impact_type in (p.get("type"), p.get("impactType"))
        ] or [p for p in projects if isinstance(p, dict)]
        if not matching:
            return ImpactResult(success=False, error=f"No {impact_type} projects available")

        project = matching[0]
        impact_id = f"gs_{int(datetime.utcnow().timestamp())}_{uuid.uuid4().hex[:9]}"
        logger.info(f"🌍 Greenspark {request.amount} {request.action.value} via {project.get('name', 'project')} → {impact_id}")
        return ImpactResult(
            success=True,
            impact_id=impact_id,
            message=f"{request.amount} {request.action.value} via {project.get('name', 'Greenspark project')}",
        )


class OneClickImpactPartner(ImpactPartner):
    """1ClickImpact has its own vocabulary; we translate what it can do."""

    name = "oneclick"

    ACTION_MAPPING = {
        ImpactAction.plant_tree: "plant_tree",
        ImpactAction.rescue_plastic: "clean_ocean",
        ImpactAction.offset_carbon: "capture_carbon",
    }

    def __init__(self, api_key: str = ONE_CLICK_IMPACT_API_KEY, base_url: str = ONE_CLICK_IMPACT_API_URL):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")

    def _create(self, request: ImpactRequest, description: str) -> ImpactResult:
        partner_action = self.ACTION_MAPPING.get(request.action)
        if partner_action is None:
            return self._unsupported(request)
        if not self.api_key:
            return ImpactResult(success=False, error="1ClickImpact API key not configured")

        with self._client() as client:
            response = client.post(
                f"{self.base_url}/impact",
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={"action": partner_action, "amount": request.amount, "description": description},
            )
            if response.is_error:
                try:
                    detail = self._json_object(response).get("message")
                except ValueError:
                    detail = None
                logger.error(f"❌ 1ClickImpact error {response.status_code}: {response.text[:200]}")
                return ImpactResult(success=False, error=detail or "Failed to create impact action")
            data = self._json_object(response)

        return ImpactResult(success=True, impact_id=data.get("impact_id"), message=data.get("message"))


class EcologiPartner(ImpactPartner):
    """Ecologi only plants trees. The impact id is the URL of the tree."""

    name = "ecologi"

    def __init__(self, api_token: str = ECOLOGI_API_TOKEN, base_url: str = ECOLOGI_API_URL,
                 test_mode: bool = IMPACT_TEST_MODE):
        self.api_token = api_token
        self.base_url = base_url.rstrip("/")
        self.test_mode = test_mode

    def _create(self, request: ImpactRequest, description: str) -> ImpactResult:
        if request.action != ImpactAction.plant_tree:
            return self._unsupported(request)
        if not self.api_token:
            return ImpactResult(success=False, error="Ecologi API token not configured")

        with self._client() as client:
            response = client.post(
                f"{self.base_url}/impact/trees",
                headers={"Authorization": f"Bearer {self.api_token}"},
                json={"number": request.amount, "name": description, "test": self.test_mode},
            )
            response.raise_for_status()
            data = self._json_object(response)

        return ImpactResult(
            success=True,
            impact_id=data.get("treeUrl"),
            message=f"Planted {data.get('amount', request.amount)} tree(s) with Ecologi",
        )


PARTNERS = {
    "sandbox": SandboxPartner,
    "greenspark": GreensparkPartner,
    "oneclick": OneClickImpactPartner,
    "ecologi": EcologiPartner,
}


def get_impact_partner() -> ImpactPartner:
    """FastAPI dependency. Picks the partner named by IMPACT_PARTNER."""
    partner_cls = PARTNERS.get(IMPACT_PARTNER)
    if partner_cls is None:
        logger.warning(f"⚠️ Unknown IMPACT_PARTNER '{IMPACT_PARTNER}', using sandbox")
        partner_cls = SandboxPartner
    return partner_cls()
