# QuotaScript — Sandboxed Usage-Query Script Engine
# Copyright (C) 2026 QuotaScript Project Contributors
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program. If not, see <https://www.gnu.org/licenses/>.

"""Built-in usage script presets.

Each preset is a complete script: an object expression with a ``request``
describing the HTTP call and an ``extractor`` turning the parsed response
into usage fields. Placeholders are filled in by ``substitute_variables``.
"""

from __future__ import annotations

CUSTOM = "custom"
GENERAL = "general"
NEW_API = "newapi"
PACKYCODE = "packycode"
CODE88 = "88code"
PRIVNODE = "privnode"

PRESET_TEMPLATES: dict[str, str] = {
    CUSTOM: """({
  request: {
    url: "",
    method: "GET",
    headers: {}
  },
  extractor: function(response) {
    return {
      remaining: 0,
      unit: "USD"
    };
  }
})""",
    GENERAL: """({
  request: {
    url: "{{baseUrl}}/user/balance",
    method: "GET",
    headers: {
      "Authorization": "Bearer {{apiKey}}",
      "User-Agent": "quotascript/1.0"
    }
  },
  extractor: function(response) {
    return {
      isValid: response.is_active || true,
      remaining: response.balance,
      unit: "USD"
    };
  }
})""",
    NEW_API: """({
  request: {
    url: "{{baseUrl}}/api/user/self",
    method: "GET",
    headers: {
      "Content-Type": "application/json",
      "Authorization": "Bearer {{accessToken}}",
      "New-Api-User": "{{userId}}"
    },
  },
  extractor: function (response) {
    if (response.success && response.data) {
      return {
        planName: response.data.group || "Default plan",
        remaining: response.data.quota / 500000,
        used: response.data.used_quota / 500000,
        total: (response.data.quota + response.data.used_quota) / 500000,
        unit: "USD",
      };
    }
    return {
      isValid: false,
      invalidMessage: response.message || "Query failed"
    };
  },
})""",
    PACKYCODE: """({
  request: {
    url: "https://www.packyapi.com/api/user/self",
    method: "GET",
    headers: {
      "Authorization": "Bearer {{apiKey}}",
      "Content-Type": "application/json"
    }
  },
  extractor: function (response) {
    if (response.success === false) {
      return {
        isValid: false,
        invalidMessage: response.message || "Invalid token"
      };
    }
    const info = response.data || response;
    const remaining = info.balance ?? info.quota ?? info.credit ?? null;
    const used = info.used_quota ?? info.used ?? info.usage ?? null;
    return {
      planName: info.group || info.role || "PackyCode",
      remaining: remaining,
      used: used,
      total: remaining && used ? remaining + used : null,
      unit: info.unit || "credits",
      percentage: remaining && used ? (used / (remaining + used)) * 100 : null
    };
  }
})""",
    CODE88: """({
  request: {
    url: "{{baseUrl}}/v1/me",
    method: "GET",
    headers: {
      "Authorization": "Bearer {{apiKey}}",
      "Content-Type": "application/json"
    }
  },
  extractor: function (response) {
    if (response.error) {
      return {
        isValid: false,
        invalidMessage: response.error.message || "Invalid API key"
      };
    }
    const info = response.data || response;
    return {
      planName: info.plan || info.tier || "88code",
      remaining: info.balance ?? info.credits ?? info.quota ?? null,
      used: info.used ?? info.used_quota ?? info.usage ?? null,
      unit: info.unit || "credits"
    };
  }
})""",
    PRIVNODE: """({
  request: {
    url: "https://privnode.com/api/user/self",
    method: "GET",
    headers: {
      "Authorization": "Bearer {{apiKey}}",
      "Content-Type": "application/json"
    }
  },
  extractor: function (response) {
    if (response.success === false) {
      return {
        isValid: false,
        invalidMessage: response.message || "Invalid token"
      };
    }
    const info = response.data || response;
    const remaining = info.balance ?? info.quota ?? info.credit ?? null;
    const used = info.used_quota ?? info.used ?? info.usage ?? null;
    return {
      planName: info.group || info.role || "Privnode",
      remaining: remaining,
      used: used,
      total: remaining && used ? remaining + used : null,
      unit: info.unit || "credits",
      percentage: remaining && used ? (used / (remaining + used)) * 100 : null
    };
  }
})""",
}

# Templates whose script references {{apiKey}} / {{baseUrl}}
API_KEY_TEMPLATES = frozenset({GENERAL, PACKYCODE, CODE88, PRIVNODE})
BASE_URL_TEMPLATES = frozenset({GENERAL, CODE88})

# newapi authenticates with an access token + user id instead of the API key
ACCESS_TOKEN_TEMPLATES = frozenset({NEW_API})


def get_template(name: str) -> str:
    """Return the preset script called *name*."""
    try:
        return PRESET_TEMPLATES[name]
    except KeyError:
        known = ", ".join(sorted(PRESET_TEMPLATES))
        raise KeyError(f"Unknown template {name!r}; known templates: {known}") from None


def required_variables(name: str) -> list[str]:
    """List the substitution variables the preset *name* needs."""
    get_template(name)
    needed: list[str] = []
    if name in API_KEY_TEMPLATES:
        needed.append("apiKey")
    if name in BASE_URL_TEMPLATES or name == NEW_API:
        needed.append("baseUrl")
    if name in ACCESS_TOKEN_TEMPLATES:
        needed.extend(["accessToken", "userId"])
    return needed
