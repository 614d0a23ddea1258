#!/usr/bin/env python3
"""
Internationalization (i18n) module for SunTime
Loads status line and message strings from JSON translation files
"""

import json
import logging
from pathlib import Path
from typing import Dict, Any, Optional


DEFAULT_TRANSLATION_PATH = Path(__file__).parent / 'translations'


class Translator:
    """Handles translation loading and lookup"""

    def __init__(self, language: str = 'en', translation_path: Optional[str] = None,
                 logger: Optional[logging.Logger] = None):
        """
        Initialize translator

        Args:
            language: Language code (e.g., 'en', 'es', 'es-MX')
            translation_path: Directory holding {language}.json files,
                              defaults to the bundled translations
            logger: Logger for load errors
        """
        self.language = language or 'en'
        self.translation_path = Path(translation_path) if translation_path else DEFAULT_TRANSLATION_PATH
        self.logger = logger or logging.getLogger('SunTime')
        self.base_language = self._extract_base_language(self.language)
        self.translations: Dict[str, Any] = {}
        self.fallback_translations: Dict[str, Any] = {}
        self._load_translations()

    def _extract_base_language(self, language: str) -> str:
        """Base language code from a locale code ('es' from 'es-MX' or 'es_MX')"""
        for separator in ('-', '_'):
            if separator in language:
                return language.split(separator)[0]
        return language

    def _load_translations(self):
        """Load English, then the base language, then the locale on top"""
        self.fallback_translations = self._load_file('en')

        if self.language == 'en':
            self.translations = self.fallback_translations
            return

        merged = dict(self.fallback_translations)
        if self.base_language != 'en':
            merged = self._merge_translations(self._load_file(self.base_language), merged)
        if self.base_language != self.language:
            merged = self._merge_translations(self._load_file(self.language), merged)
        self.translations = merged

    def _merge_translations(self, primary: Dict[str, Any], fallback: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively overlay primary onto a copy of fallback"""
        result = json.loads(json.dumps(fallback))

        def merge_dict(target: dict, source: dict):
            for key, value in source.items():
                if key in target and isinstance(target[key], dict) and isinstance(value, dict):
                    merge_dict(target[key], value)
                else:
                    target[key] = value

        merge_dict(result, primary or {})
        return result

    def _load_file(self, lang: str) -> Dict[str, Any]:
        """Load one translation file, empty dict if missing or unreadable"""
        file_path = self.translation_path / f"{lang}.json"
        if not file_path.exists():
            return {}

        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            self.logger.error(f"Error parsing translation file {file_path}: {e}")
            return {}
        except OSError as e:
            self.logger.error(f"Error loading translation file {file_path}: {e}")
            return {}

    def _lookup(self, translations: Dict[str, Any], key: str) -> Any:
        value: Any = translations
        for part in key.split('.'):
            if isinstance(value, dict) and part in value:
                value = value[part]
            else:
                return None
        return value

    def get_value(self, key: str) -> Any:
        """Raw value at a dotted key, falling back to English, or None"""
        value = self._lookup(self.translations, key)
        if value is None:
            value = self._lookup(self.fallback_translations, key)
        return value

    def translate(self, key: str, **kwargs) -> str:
        """
        Translate a key with optional formatting

        Args:
            key: Dot-separated key path (e.g., 'display.sunrise')
            **kwargs: Formatting parameters for str.format()

        Returns:
            Translated string, or the key itself if not found
        """
        value = self.get_value(key)
        if not isinstance(value, str):
            return key
        if kwargs:
            try:
                return value.format(**kwargs)
            except (KeyError, ValueError, IndexError):
                return value
        return value

    def get_available_languages(self) -> list:
        """Language codes with a translation file, sorted"""
        if not self.translation_path.exists():
            return []
        return sorted(file.stem for file in self.translation_path.glob('*.json'))
