# src/config/loader.py
"""
Загрузчик конфигурации проекта.
Единственный источник истины: config/config.json.
Секретные данные (пароли MQTT, ключ Google, пароль БД) переопределяются
из переменных окружения.
"""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# =============================================================================
# ОПРЕДЕЛЕНИЕ ПУТЕЙ
# =============================================================================

def get_project_root() -> Path:
    """Возвращает корневую директорию проекта."""
    return Path(__file__).parent.parent.parent


def get_config_path() -> Path:
    """Возвращает путь к файлу конфигурации (можно переопределить через CONFIG_PATH)."""
    override = os.getenv("CONFIG_PATH")
    if override:
        return Path(override)
    return get_project_root() / "config" / "config.json"


def load_config_json() -> dict[str, Any]:
    """Загружает config.json и возвращает словарь."""
    config_path = get_config_path()
    if not config_path.exists():
        raise FileNotFoundError(f"Файл конфигурации не найден: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        return json.load(f)


def _env_or(data: dict[str, Any], key: str, default: Any) -> Any:
    """Значение из окружения, иначе из config.json, иначе дефолт."""
    return os.getenv(key, data.get(key, default))


# =============================================================================
# PYDANTIC МОДЕЛИ КОНФИГУРАЦИИ
# =============================================================================

class SystemSettings(BaseModel):
    """Системные настройки."""
    PROJECT_NAME: str = "carpool_relay"
    VERSION: str = "1.0.0"
    DEBUG: bool = True
    ENVIRONMENT: str = "development"
    COMPONENT_MODE: str = "driver"


class LoggingSettings(BaseModel):
    """Настройки логирования."""
    LOG_LEVEL: str = "DEBUG"
    LOG_TO_FILE: bool = False
    LOG_FILE_PATH: str = "logs/app.log"
    LOG_FORMAT: str = "colored"
    LOG_MAX_BYTES: int = 10485760


class MqttSettings(BaseModel):
    """Настройки MQTT брокера."""
    MQTT_HOST: str = "localhost"
    MQTT_TLS_PORT: int = 8883
    MQTT_WSS_PORTS: list[int] = Field(default_factory=lambda: [443, 8884])
    MQTT_WS_PATH: str = "/mqtt"
    MQTT_USE_TLS: bool = True
    MQTT_KEEPALIVE: int = 20
    MQTT_CONNECT_TIMEOUT: float = 15.0
    MQTT_MIN_ATTEMPT_TIMEOUT: float = 3.0
    MQTT_TOPIC_NAMESPACE: str = "carpool"
    MQTT_QOS: int = 1
    MQTT_DRIVER_USERNAME: str = ""
    MQTT_DRIVER_PASSWORD: str = ""
    MQTT_PASSENGER_USERNAME: str = ""
    MQTT_PASSENGER_PASSWORD: str = ""

    @field_validator("MQTT_DRIVER_PASSWORD", "MQTT_PASSENGER_PASSWORD", mode="before")
    @classmethod
    def get_from_env(cls, v: str, info) -> str:
        """Получает пароль из переменных окружения, если не задан."""
        if not v:
            return os.getenv(info.field_name, "")
        return v

    @field_validator("MQTT_QOS")
    @classmethod
    def check_qos(cls, v: int) -> int:
        """QoS MQTT: 0, 1 или 2."""
        if v not in (0, 1, 2):
            raise ValueError(f"Недопустимый QoS: {v}")
        return v


class GoogleMapsSettings(BaseModel):
    """Настройки Google Maps API."""
    GOOGLE_MAPS_API_KEY: str = ""
    DIRECTIONS_URL: str = "https://maps.googleapis.com/maps/api/directions/json"
    DIRECTIONS_TIMEOUT: float = 10.0

    @field_validator("GOOGLE_MAPS_API_KEY", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает API ключ из переменных окружения."""
        if not v:
            return os.getenv("GOOGLE_MAPS_API_KEY", "")
        return v


class DatabaseSettings(BaseModel):
    """Настройки PostgreSQL (Supabase)."""
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "postgres"
    DB_USER: str = "postgres"
    DB_PASSWORD: str = ""
    DB_MIN_POOL_SIZE: int = 1
    DB_MAX_POOL_SIZE: int = 5
    DB_COMMAND_TIMEOUT: int = 30
    DB_RETRY_ATTEMPTS: int = 3
    DB_RETRY_DELAY: float = 1.0

    @field_validator("DB_PASSWORD", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает пароль из переменных окружения."""
        if not v:
            return os.getenv("DB_PASSWORD", "")
        return v

    @property
    def dsn(self) -> str:
        """Возвращает DSN для подключения к PostgreSQL."""
        return (
            f"postgresql://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )


class SamplerSettings(BaseModel):
    """Настройки снятия координат на стороне водителя."""
    DISTANCE_FILTER_M: float = 5.0
    TIME_LIMIT_SEC: float = 3.0
    SAFETY_POLL_SEC: float = 5.0
    GPSD_HOST: str = "127.0.0.1"
    GPSD_PORT: int = 2947


class TrackingSettings(BaseModel):
    """Настройки отслеживания на стороне пассажира."""
    ROUTE_REFETCH_DISTANCE_M: float = 100.0
    STATIONARY_SPEED_KMH: float = 1.0
    PICKUP_STATUS_POLL_SEC: float = 5.0
    RECONNECT_CHECK_SEC: float = 2.0


class FallbackSettings(BaseModel):
    """Параметры оценки маршрута без Directions API."""
    ROAD_FACTOR: float = 1.3
    AVERAGE_SPEED_KMH: float = 40.0


class NotificationSettings(BaseModel):
    """Настройки получения отложенных уведомлений."""
    NOTIFICATIONS_POLL_SEC: float = 10.0
    NOTIFICATIONS_BATCH_SIZE: int = 50


# =============================================================================
# ГЛАВНЫЙ КЛАСС НАСТРОЕК
# =============================================================================

class Settings(BaseSettings):
    """
    Главный класс настроек приложения.
    Агрегирует все секции конфигурации.
    """
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    system: SystemSettings = Field(default_factory=SystemSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    mqtt: MqttSettings = Field(default_factory=MqttSettings)
    google_maps: GoogleMapsSettings = Field(default_factory=GoogleMapsSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    sampler: SamplerSettings = Field(default_factory=SamplerSettings)
    tracking: TrackingSettings = Field(default_factory=TrackingSettings)
    fallback: FallbackSettings = Field(default_factory=FallbackSettings)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)

    @classmethod
    def from_dict(cls, config_data: dict[str, Any]) -> "Settings":
        """
        Создаёт объект Settings из плоского словаря config.json.
        Секреты и адреса сервисов переопределяются из переменных окружения.
        """
        # Фильтруем комментарии (ключи, начинающиеся с _comment_)
        data = {k: v for k, v in config_data.items() if not k.startswith("_comment_")}

        return cls(
            system=SystemSettings(
                PROJECT_NAME=data.get("PROJECT_NAME", "carpool_relay"),
                VERSION=data.get("VERSION", "1.0.0"),
                DEBUG=data.get("DEBUG", True),
                ENVIRONMENT=data.get("ENVIRONMENT", "development"),
                COMPONENT_MODE=_env_or(data, "COMPONENT_MODE", "driver"),
            ),
            logging=LoggingSettings(
                LOG_LEVEL=data.get("LOG_LEVEL", "DEBUG"),
                LOG_TO_FILE=data.get("LOG_TO_FILE", False),
                LOG_FILE_PATH=data.get("LOG_FILE_PATH", "logs/app.log"),
                LOG_FORMAT=data.get("LOG_FORMAT", "colored"),
                LOG_MAX_BYTES=data.get("LOG_MAX_BYTES", 10485760),
            ),
            mqtt=MqttSettings(
                MQTT_HOST=_env_or(data, "MQTT_HOST", "localhost"),
                MQTT_TLS_PORT=int(_env_or(data, "MQTT_TLS_PORT", 8883)),
                MQTT_WSS_PORTS=data.get("MQTT_WSS_PORTS", [443, 8884]),
                MQTT_WS_PATH=data.get("MQTT_WS_PATH", "/mqtt"),
                MQTT_USE_TLS=data.get("MQTT_USE_TLS", True),
                MQTT_KEEPALIVE=data.get("MQTT_KEEPALIVE", 20),
                MQTT_CONNECT_TIMEOUT=data.get("MQTT_CONNECT_TIMEOUT", 15.0),
                MQTT_MIN_ATTEMPT_TIMEOUT=data.get("MQTT_MIN_ATTEMPT_TIMEOUT", 3.0),
                MQTT_TOPIC_NAMESPACE=data.get("MQTT_TOPIC_NAMESPACE", "carpool"),
                MQTT_QOS=data.get("MQTT_QOS", 1),
                MQTT_DRIVER_USERNAME=_env_or(data, "MQTT_DRIVER_USERNAME", ""),
                MQTT_DRIVER_PASSWORD=_env_or(data, "MQTT_DRIVER_PASSWORD", ""),
                MQTT_PASSENGER_USERNAME=_env_or(data, "MQTT_PASSENGER_USERNAME", ""),
                MQTT_PASSENGER_PASSWORD=_env_or(data, "MQTT_PASSENGER_PASSWORD", ""),
            ),
            google_maps=GoogleMapsSettings(
                GOOGLE_MAPS_API_KEY=_env_or(data, "GOOGLE_MAPS_API_KEY", ""),
                DIRECTIONS_URL=data.get(
                    "DIRECTIONS_URL", "https://maps.googleapis.com/maps/api/directions/json"
                ),
                DIRECTIONS_TIMEOUT=data.get("DIRECTIONS_TIMEOUT", 10.0),
            ),
            database=DatabaseSettings(
                DB_HOST=_env_or(data, "DB_HOST", "localhost"),
                DB_PORT=int(_env_or(data, "DB_PORT", 5432)),
                DB_NAME=_env_or(data, "DB_NAME", "postgres"),
                DB_USER=_env_or(data, "DB_USER", "postgres"),
                DB_PASSWORD=_env_or(data, "DB_PASSWORD", ""),
                DB_MIN_POOL_SIZE=data.get("DB_MIN_POOL_SIZE", 1),
                DB_MAX_POOL_SIZE=data.get("DB_MAX_POOL_SIZE", 5),
                DB_COMMAND_TIMEOUT=data.get("DB_COMMAND_TIMEOUT", 30),
                DB_RETRY_ATTEMPTS=data.get("DB_RETRY_ATTEMPTS", 3),
                DB_RETRY_DELAY=data.get("DB_RETRY_DELAY", 1.0),
            ),
            sampler=SamplerSettings(
                DISTANCE_FILTER_M=data.get("DISTANCE_FILTER_M", 5.0),
                TIME_LIMIT_SEC=data.get("TIME_LIMIT_SEC", 3.0),
                SAFETY_POLL_SEC=data.get("SAFETY_POLL_SEC", 5.0),
                GPSD_HOST=_env_or(data, "GPSD_HOST", "127.0.0.1"),
                GPSD_PORT=int(_env_or(data, "GPSD_PORT", 2947)),
            ),
            tracking=TrackingSettings(
                ROUTE_REFETCH_DISTANCE_M=data.get("ROUTE_REFETCH_DISTANCE_M", 100.0),
                STATIONARY_SPEED_KMH=data.get("STATIONARY_SPEED_KMH", 1.0),
                PICKUP_STATUS_POLL_SEC=data.get("PICKUP_STATUS_POLL_SEC", 5.0),
                RECONNECT_CHECK_SEC=data.get("RECONNECT_CHECK_SEC", 2.0),
            ),
            fallback=FallbackSettings(
                ROAD_FACTOR=data.get("ROAD_FACTOR", 1.3),
                AVERAGE_SPEED_KMH=data.get("AVERAGE_SPEED_KMH", 40.0),
            ),
            notifications=NotificationSettings(
                NOTIFICATIONS_POLL_SEC=data.get("NOTIFICATIONS_POLL_SEC", 10.0),
                NOTIFICATIONS_BATCH_SIZE=data.get("NOTIFICATIONS_BATCH_SIZE", 50),
            ),
        )

    @classmethod
    def from_config_json(cls) -> "Settings":
        """Создаёт объект Settings из config.json."""
        return cls.from_dict(load_config_json())


@lru_cache()
def get_settings() -> Settings:
    """
    Возвращает синглтон настроек приложения.
    Использует кэширование для производительности.
    """
    from dotenv import load_dotenv

    env_path = get_project_root() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    return Settings.from_config_json()


# Экспорт синглтона для удобного импорта
settings = get_settings()
