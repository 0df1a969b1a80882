"""User-agent parsing into coarse device, OS and browser labels."""

from dataclasses import dataclass

from user_agents import parse

from qrlinks.enums import DeviceType

__all__ = ["AgentInfo", "UserAgentParser"]

MAX_LABEL_LENGTH = 50


@dataclass(frozen=True)
class AgentInfo:
    device: str = DeviceType.UNKNOWN
    os: str = "unknown"
    browser: str = "unknown"


class UserAgentParser:
    def parse(self, user_agent: str | None) -> AgentInfo:
        """Returns e.g. AgentInfo(device='mobile', os='iOS 17.1', browser='Mobile Safari 17.1')."""
        if not user_agent:
            return AgentInfo()

        agent = parse(user_agent)
        return AgentInfo(
            device=_device_type(agent),
            os=_label(agent.os.family, agent.os.version[:2]),
            browser=_label(agent.browser.family, agent.browser.version[:2]),
        )


def _device_type(agent) -> DeviceType:
    if agent.is_bot:
        return DeviceType.BOT
    if agent.is_tablet:
        return DeviceType.TABLET
    if agent.is_mobile:
        return DeviceType.MOBILE
    if agent.is_pc:
        return DeviceType.DESKTOP
    return DeviceType.OTHER


def _label(family: str | None, version: tuple) -> str:
    # strip everything past minor, patch/build numbers change frequently
    version_string = ".".join(str(part) for part in version)
    label = f"{family or 'Other'} {version_string}".strip()
    return label[:MAX_LABEL_LENGTH]
