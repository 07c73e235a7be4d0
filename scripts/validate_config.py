#!/usr/bin/env python3
"""Configuration validation script."""

import sys
from pathlib import Path

# Add the project root to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from confluence_app.config.loader import ConfigLoader
from confluence_app.config.presets import PRESET_OVERRIDES
from confluence_app.config.validation import ConfigValidator, ValidationError


def validate_preset(preset: str) -> list[ValidationError]:
    """Validate the merged configuration for one preset."""
    loader = ConfigLoader.create(preset=preset)
    config = loader.merge_config()
    return ConfigValidator.validate_config(config)


def main():
    """Main validation function."""
    print("🔍 Validating strategy configuration...")

    all_valid = True

    for preset in PRESET_OVERRIDES:
        print(f"\n📊 Validating preset {preset}...")

        try:
            errors = validate_preset(preset)

            if errors:
                print(f"❌ Found {len(errors)} validation errors:")
                for error in errors:
                    print(f"  • {error.field}: {error.message} (value: {error.value})")
                all_valid = False
            else:
                print(f"✅ {preset} configuration is valid")

        except Exception as e:
            print(f"❌ Error validating {preset}: {e}")
            all_valid = False

    print("\n📋 Testing runtime overrides...")
    test_overrides = {
        "exits": {
            "profit_target_fraction": 0.6,
            "stop_loss_fraction": 0.3,
        }
    }

    try:
        config = ConfigLoader.create().merge_config(test_overrides)
        errors = ConfigValidator.validate_config(config)

        if errors:
            print("❌ Override validation failed:")
            for error in errors:
                print(f"  • {error.field}: {error.message}")
            all_valid = False
        else:
            print("✅ Override validation passed")

    except Exception as e:
        print(f"❌ Error testing overrides: {e}")
        all_valid = False

    if all_valid:
        print("\n🎉 All configuration validation passed!")
        sys.exit(0)
    else:
        print("\n❌ Configuration validation failed!")
        sys.exit(1)


if __name__ == "__main__":
    main()
