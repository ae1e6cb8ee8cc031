"""
Seed recipes inserted by POST /api/recipes/seed/initial.

One recipe per content pipeline stage. Stored exactly like user-created
recipes (camelCase JSON), so they go through the same validation.
"""

GEMINI_TEXT = {"provider": "gemini", "modelName": "gemini-2.5-flash", "temperature": 0.7, "maxTokens": 4000}
GEMINI_IMAGE = {"provider": "gemini", "modelName": "gemini-2.5-flash-image", "temperature": 0.8}


PERSONA_GENERATION_RECIPE = {
    "id": "recipe_persona_generation_v1",
    "name": "Persona Generation Pipeline",
    "description": "Generate persona details and portrait images",
    "stageType": "stage_2_personas",
    "nodes": [
        {
            "id": "generate_persona_details",
            "name": "Generate Persona Details",
            "type": "text_generation",
            "inputs": [
                "productDescription",
                "targetAudience",
                {"name": "numberOfPersonas", "default": 3},
            ],
            "responseFormat": "json",
            "aiModel": GEMINI_TEXT,
            "prompt": (
                "You are an expert casting director and consumer psychologist. Create "
                "{numberOfPersonas} diverse, believable personas of UGC video creators who would "
                "authentically recommend this product.\n\n"
                "Product description: {productDescription}\n"
                "Target audience: {targetAudience}\n\n"
                "Vary age, profession, personality, lifestyle and cultural context. Avoid stereotypes.\n\n"
                "Respond with a JSON array. Each element has:\n"
                '- "coreIdentity": name, age, demographic, motivation, bio\n'
                '- "physicalAppearance": general, hair, build, clothingAesthetic, signatureDetails\n'
                '- "personality": demeanor, energyLevel, communicationStyle\n'
                '- "productConnection": why this persona uses the product, in one or two sentences'
            ),
        },
        {
            "id": "generate_persona_images",
            "name": "Generate Persona Images",
            "type": "image_generation",
            "inputs": ["personaData"],
            "forEach": "personaData",
            "itemDelaySeconds": 0.5,
            "aiModel": GEMINI_IMAGE,
            "errorHandling": {"onError": "skip", "defaultOutput": []},
            "prompt": (
                "Create a professional UGC-style portrait photo of {coreIdentity.name}, "
                "age {coreIdentity.age} ({coreIdentity.demographic}).\n\n"
                "Appearance: {physicalAppearance.general}. Hair: {physicalAppearance.hair}. "
                "Build: {physicalAppearance.build}. Style: {physicalAppearance.clothingAesthetic}. "
                "Notable features: {physicalAppearance.signatureDetails}.\n"
                "Demeanor: {personality.demeanor}, energy: {personality.energyLevel}.\n\n"
                "Natural lighting, clean neutral background, friendly expression, direct eye "
                "contact, high resolution, suitable for social media advertising."
            ),
            "parameters": {"resolution": "1024x1024"},
        },
        {
            "id": "combine_personas",
            "name": "Combine Details With Images",
            "type": "data_transform",
            "operation": "merge_by_index",
            "inputs": ["personaDetails", "personaImages"],
            "parameters": {"base": "personaDetails", "fields": {"image": "personaImages"}},
            "final": True,
        },
    ],
    "edges": [
        {"from": "external_input", "fromOutput": "productDescription",
         "to": "generate_persona_details", "toInput": "productDescription"},
        {"from": "external_input", "fromOutput": "targetAudience",
         "to": "generate_persona_details", "toInput": "targetAudience"},
        {"from": "external_input", "fromOutput": "numberOfPersonas",
         "to": "generate_persona_details", "toInput": "numberOfPersonas"},
        {"from": "generate_persona_details", "to": "generate_persona_images", "toInput": "personaData"},
        {"from": "generate_persona_details", "to": "combine_personas", "toInput": "personaDetails"},
        {"from": "generate_persona_images", "to": "combine_personas", "toInput": "personaImages"},
    ],
    "tags": ["persona", "generation", "stage2"],
}


NARRATIVE_GENERATION_RECIPE = {
    "id": "recipe_narrative_generation_v1",
    "name": "Narrative Generation Pipeline",
    "description": "Generate narrative themes for the selected persona",
    "stageType": "stage_3_narratives",
    "nodes": [
        {
            "id": "generate_narrative_themes",
            "name": "Generate Narrative Themes",
            "type": "text_generation",
            "inputs": [
                "productDescription",
                "targetAudience",
                "selectedPersonaName",
                {"name": "numberOfNarratives", "default": 3},
            ],
            "responseFormat": "json",
            "aiModel": GEMINI_TEXT,
            "final": True,
            "prompt": (
                "You are a creative strategist for UGC video ads. Propose {numberOfNarratives} "
                "distinct narrative themes in which {selectedPersonaName} recommends the product.\n\n"
                "Product description: {productDescription}\n"
                "Target audience: {targetAudience}\n\n"
                "Respond with a JSON array. Each element has: title, hook, structure "
                "(problem-solution, day-in-the-life, testimonial, ...), emotionalTone, keyMessage."
            ),
        },
    ],
    "edges": [
        {"from": "external_input", "fromOutput": "productDescription",
         "to": "generate_narrative_themes", "toInput": "productDescription"},
        {"from": "external_input", "fromOutput": "targetAudience",
         "to": "generate_narrative_themes", "toInput": "targetAudience"},
        {"from": "external_input", "fromOutput": "selectedPersonaName",
         "to": "generate_narrative_themes", "toInput": "selectedPersonaName"},
        {"from": "external_input", "fromOutput": "numberOfNarratives",
         "to": "generate_narrative_themes", "toInput": "numberOfNarratives"},
    ],
    "tags": ["narrative", "generation", "stage3"],
}


STORYBOARD_GENERATION_RECIPE = {
    "id": "recipe_storyboard_generation_v1",
    "name": "Storyboard Generation Pipeline",
    "description": "Generate storyboard scenes and one visual per scene",
    "stageType": "stage_4_storyboard",
    "nodes": [
        {
            "id": "generate_story_scenes",
            "name": "Generate Story Scenes",
            "type": "text_generation",
            "inputs": [
                "productDescription",
                "selectedPersonaName",
                "selectedPersonaDescription",
                "narrativeTheme",
                {"name": "numberOfScenes", "default": 5},
                {"name": "videoDuration", "default": 30},
            ],
            "responseFormat": "json",
            "aiModel": GEMINI_TEXT,
            "prompt": (
                "You are a storyboard artist for short UGC marketing videos. Break the narrative "
                "into {numberOfScenes} scenes for a {videoDuration}-second video.\n\n"
                "Product: {productDescription}\n"
                "Persona: {selectedPersonaName}, {selectedPersonaDescription}\n"
                "Narrative theme: {narrativeTheme}\n\n"
                "Keep the persona visually consistent across scenes. Respond with a JSON array. "
                "Each element has: title, location, description, duration (seconds), cameraAngle, "
                "visualBrief."
            ),
        },
        {
            "id": "generate_scene_images",
            "name": "Generate Scene Images",
            "type": "image_generation",
            "inputs": ["sceneData"],
            "forEach": "sceneData",
            "itemDelaySeconds": 0.5,
            "aiModel": GEMINI_IMAGE,
            "errorHandling": {"onError": "skip", "defaultOutput": []},
            "prompt": (
                "Storyboard frame for a UGC marketing video.\n"
                "Main character: {selectedPersonaName} ({selectedPersonaDescription}); keep "
                "the same face, hair and clothing style in every scene.\n\n"
                "Scene: {title}, at {location}. {description}\n"
                "Camera: {cameraAngle}. Visual brief: {visualBrief}"
            ),
        },
        {
            "id": "combine_scenes",
            "name": "Combine Scenes With Images",
            "type": "data_transform",
            "operation": "merge_by_index",
            "inputs": ["scenes", "sceneImages"],
            "parameters": {"base": "scenes", "fields": {"image": "sceneImages"}},
            "final": True,
        },
    ],
    "edges": [
        {"from": "external_input", "fromOutput": "productDescription",
         "to": "generate_story_scenes", "toInput": "productDescription"},
        {"from": "external_input", "fromOutput": "selectedPersonaName",
         "to": "generate_story_scenes", "toInput": "selectedPersonaName"},
        {"from": "external_input", "fromOutput": "selectedPersonaDescription",
         "to": "generate_story_scenes", "toInput": "selectedPersonaDescription"},
        {"from": "external_input", "fromOutput": "narrativeTheme",
         "to": "generate_story_scenes", "toInput": "narrativeTheme"},
        {"from": "external_input", "fromOutput": "numberOfScenes",
         "to": "generate_story_scenes", "toInput": "numberOfScenes"},
        {"from": "external_input", "fromOutput": "videoDuration",
         "to": "generate_story_scenes", "toInput": "videoDuration"},
        {"from": "generate_story_scenes", "to": "generate_scene_images", "toInput": "sceneData"},
        {"from": "generate_story_scenes", "to": "combine_scenes", "toInput": "scenes"},
        {"from": "generate_scene_images", "to": "combine_scenes", "toInput": "sceneImages"},
    ],
    "tags": ["storyboard", "generation", "stage4"],
}


SCREENPLAY_GENERATION_RECIPE = {
    "id": "recipe_screenplay_generation_v1",
    "name": "Screenplay Generation Pipeline",
    "description": "Turn storyboard scenes into a timed screenplay",
    "stageType": "stage_5_screenplay",
    "nodes": [
        {
            "id": "generate_screenplay_timings",
            "name": "Generate Screenplay with Timings",
            "type": "text_generation",
            "inputs": ["storyboardScenes", "selectedPersonaName", {"name": "videoDuration", "default": 30}],
            "responseFormat": "json",
            "aiModel": GEMINI_TEXT,
            "final": True,
            "prompt": (
                "You are a screenwriter for video advertisements. Convert these storyboard scenes "
                "into a second-by-second screenplay for a {videoDuration}-second video starring "
                "{selectedPersonaName}.\n\n"
                "Storyboard scenes:\n{storyboardScenes}\n\n"
                "Respond with a JSON array. Each element has: sceneNumber, startTime, endTime, "
                "cameraFlow, dialogue, onScreenText, transition. Timings must be contiguous and "
                "end at the video duration."
            ),
        },
    ],
    "edges": [
        {"from": "external_input", "fromOutput": "storyboardScenes",
         "to": "generate_screenplay_timings", "toInput": "storyboardScenes"},
        {"from": "external_input", "fromOutput": "selectedPersonaName",
         "to": "generate_screenplay_timings", "toInput": "selectedPersonaName"},
        {"from": "external_input", "fromOutput": "videoDuration",
         "to": "generate_screenplay_timings", "toInput": "videoDuration"},
    ],
    "tags": ["screenplay", "generation", "stage5"],
}


SEED_RECIPES = [
    PERSONA_GENERATION_RECIPE,
    NARRATIVE_GENERATION_RECIPE,
    STORYBOARD_GENERATION_RECIPE,
    SCREENPLAY_GENERATION_RECIPE,
]
