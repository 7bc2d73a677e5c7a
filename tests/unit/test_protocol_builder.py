from protocol_registry.services.protocol_builder import build_protocol


def test_builder_derives_inputs_and_keeps_test_opaque():
    def encode_depth(depth, unit):
        return depth

    definition = build_protocol(
        name="sample_depth",
        description="Sample taken at {depth} {unit}, depth {depth} again",
        test=encode_depth,
        example={"depth": [5, 10], "unit": ["cm", "cm"]},
        type="int",
        bits=5,
        note="first",
    )

    assert definition.inputs == ["depth", "unit"]
    assert definition.version == "1.0.0"
    assert definition.encoding_type == "int"
    assert definition.change_note == "first"
    assert definition.domain_path == ""
    assert "def encode_depth(depth, unit):" in definition.test_function


def test_builder_accepts_explicit_inputs_and_string_test():
    definition = build_protocol(
        name="rain_detected",
        description="Rain detected: {flag}",
        test="lambda flag: int(bool(flag))",
        example={"flag": [True, False]},
        type="bool",
        bits=1,
        version="2.0.0",
        extends="rain_detected@1.0.0",
        inputs=["flag"],
    )

    assert definition.test_function == "lambda flag: int(bool(flag))"
    assert definition.version == "2.0.0"
    assert definition.extends == "rain_detected@1.0.0"
    assert definition.change_note == ""
