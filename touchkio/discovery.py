"""MQTT discovery message builders for Home Assistant."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True)
class DiscoveryEntity:
    """One externally visible control or sensor.

    ``object_id`` is the path component shared by the config topic and the
    entity's state/command topics.
    """

    platform: str
    object_id: str
    config: dict[str, Any]
    state_topic: str | None = None
    command_topics: tuple[str, ...] = field(default_factory=tuple)

    @property
    def unique_id(self) -> str:
        return str(self.config["unique_id"])

    def config_topic(self, discovery_prefix: str, node_id: str) -> str:
        return f"{discovery_prefix}/{self.platform}/{node_id}/{self.object_id}/config"


def _common(
    name: str,
    unique_id: str,
    device: dict[str, Any],
    icon: str | None,
    entity_category: str | None,
) -> dict[str, Any]:
    entity: dict[str, Any] = {
        "name": name,
        "unique_id": unique_id,
        "device": device,
    }
    if icon:
        entity["ic"] = icon
    if entity_category:
        entity["entity_category"] = entity_category
    return entity


def build_button_entity(
    name: str,
    unique_id: str,
    command_topic: str,
    device: dict[str, Any],
    icon: str | None = None,
    entity_category: str | None = None,
) -> dict[str, Any]:
    """Build a Home Assistant button entity definition.

    Args:
        name: Display name of the button.
        unique_id: Unique identifier for the entity.
        command_topic: MQTT topic the press is published to.
        device: Device block shared by all entities of this kiosk.
        icon: Optional icon (e.g., "mdi:power").
        entity_category: Optional entity category (e.g., "config").

    Returns:
        Button entity definition dictionary.
    """
    entity = _common(name, unique_id, device, icon, entity_category)
    entity["cmd_t"] = command_topic
    return entity


def build_select_entity(
    name: str,
    unique_id: str,
    command_topic: str,
    state_topic: str,
    options: list[str],
    device: dict[str, Any],
    icon: str | None = None,
) -> dict[str, Any]:
    """Build a Home Assistant select entity definition.

    Args:
        name: Display name of the select.
        unique_id: Unique identifier for the entity.
        command_topic: MQTT topic the chosen option is published to.
        state_topic: MQTT topic holding the current option.
        options: Allowed option labels, in display order.
        device: Device block shared by all entities of this kiosk.
        icon: Optional icon.

    Returns:
        Select entity definition dictionary.
    """
    entity = _common(name, unique_id, device, icon, None)
    entity.update(
        {
            "cmd_t": command_topic,
            "stat_t": state_topic,
            "val_tpl": "{{ value }}",
            "options": list(options),
        }
    )
    return entity


def build_light_entity(
    name: str,
    unique_id: str,
    command_topic: str,
    state_topic: str,
    device: dict[str, Any],
    brightness_command_topic: str | None = None,
    brightness_state_topic: str | None = None,
    icon: str | None = None,
) -> dict[str, Any]:
    """Build a Home Assistant light entity definition.

    The light is on/off only unless both brightness topics are given, in
    which case it advertises a 1-100 brightness scale.

    Returns:
        Light entity definition dictionary.
    """
    entity = _common(name, unique_id, device, icon, None)
    entity.update(
        {
            "cmd_t": command_topic,
            "stat_t": state_topic,
            "supported_color_modes": ["onoff"],
        }
    )
    if brightness_command_topic and brightness_state_topic:
        entity.update(
            {
                "supported_color_modes": ["brightness"],
                "brightness_command_topic": brightness_command_topic,
                "brightness_state_topic": brightness_state_topic,
                "brightness_scale": 100,
            }
        )
    return entity


def build_number_entity(
    name: str,
    unique_id: str,
    command_topic: str,
    state_topic: str,
    device: dict[str, Any],
    min_value: int = 0,
    max_value: int = 100,
    step: int = 1,
    mode: str = "slider",
    unit_of_measurement: str | None = None,
    icon: str | None = None,
) -> dict[str, Any]:
    """Build a Home Assistant number entity definition.

    Args:
        name: Display name of the number control.
        unique_id: Unique identifier for the entity.
        command_topic: MQTT topic to publish commands to.
        state_topic: MQTT topic to publish state to.
        device: Device block shared by all entities of this kiosk.
        min_value: Minimum value.
        max_value: Maximum value.
        step: Step size.
        mode: "slider" or "box".
        unit_of_measurement: Optional unit of measurement (e.g., "%").
        icon: Optional icon (e.g., "mdi:volume-high").

    Returns:
        Number entity definition dictionary.
    """
    entity = _common(name, unique_id, device, icon, None)
    entity.update(
        {
            "cmd_t": command_topic,
            "stat_t": state_topic,
            "val_tpl": "{{ value | int }}",
            "mode": mode,
            "min": min_value,
            "max": max_value,
            "step": step,
        }
    )
    if unit_of_measurement:
        entity["unit_of_meas"] = unit_of_measurement
    return entity


def build_switch_entity(
    name: str,
    unique_id: str,
    command_topic: str,
    state_topic: str,
    device: dict[str, Any],
    icon: str | None = None,
) -> dict[str, Any]:
    entity = _common(name, unique_id, device, icon, None)
    entity.update({"cmd_t": command_topic, "stat_t": state_topic})
    return entity


def build_text_entity(
    name: str,
    unique_id: str,
    command_topic: str,
    state_topic: str,
    device: dict[str, Any],
    pattern: str | None = None,
    icon: str | None = None,
) -> dict[str, Any]:
    entity = _common(name, unique_id, device, icon, None)
    entity.update({"cmd_t": command_topic, "stat_t": state_topic, "val_tpl": "{{ value }}"})
    if pattern:
        entity["pattern"] = pattern
    return entity


def build_sensor_entity(
    name: str,
    unique_id: str,
    state_topic: str,
    device: dict[str, Any],
    attributes_topic: str | None = None,
    value_template: str = "{{ value }}",
    unit_of_measurement: str | None = None,
    icon: str | None = None,
    entity_category: str | None = None,
) -> dict[str, Any]:
    """Build a Home Assistant sensor entity definition.

    Args:
        name: Display name of the sensor.
        unique_id: Unique identifier for the entity.
        state_topic: MQTT topic to read state from.
        device: Device block shared by all entities of this kiosk.
        attributes_topic: Optional topic carrying a JSON attributes object.
        value_template: Template applied to the raw state payload.
        unit_of_measurement: Optional unit of measurement.
        icon: Optional icon.
        entity_category: Optional entity category (e.g., "diagnostic").

    Returns:
        Sensor entity definition dictionary.
    """
    entity = _common(name, unique_id, device, icon, entity_category)
    entity.update({"stat_t": state_topic, "val_tpl": value_template})
    if attributes_topic:
        entity["json_attr_t"] = attributes_topic
    if unit_of_measurement:
        entity["unit_of_meas"] = unit_of_measurement
    return entity


def build_binary_sensor_entity(
    name: str,
    unique_id: str,
    state_topic: str,
    device: dict[str, Any],
    device_class: str | None = None,
    icon: str | None = None,
) -> dict[str, Any]:
    entity = _common(name, unique_id, device, icon, None)
    entity.update({"stat_t": state_topic, "pl_on": "ON", "pl_off": "OFF"})
    if device_class:
        entity["dev_cla"] = device_class
    return entity


def build_image_entity(
    name: str,
    unique_id: str,
    image_topic: str,
    device: dict[str, Any],
    icon: str | None = None,
    entity_category: str | None = "diagnostic",
) -> dict[str, Any]:
    """Build an image entity fed with base64 PNG payloads."""
    entity = _common(name, unique_id, device, icon, entity_category)
    entity.update({"image_topic": image_topic, "image_encoding": "b64", "content_type": "image/png"})
    return entity


def build_update_entity(
    name: str,
    unique_id: str,
    command_topic: str,
    state_topic: str,
    payload_install: str,
    device: dict[str, Any],
) -> dict[str, Any]:
    entity = _common(name, unique_id, device, None, None)
    entity.update({"cmd_t": command_topic, "stat_t": state_topic, "payload_install": payload_install})
    return entity
