"""HTTP tests for the API routers."""
import pytest


async def _create(client, name, type="Person", **extra):
    resp = await client.post("/entities", json={"name": name, "type": type, **extra})
    assert resp.status_code in (200, 201), resp.text
    return resp.json()


async def _relate(client, source, predicate, target):
    resp = await client.post("/entities/relationships", json={
        "sourceEntityId": source["id"],
        "targetEntityId": target["id"],
        "predicateName": predicate,
    })
    assert resp.status_code in (200, 201), resp.text
    return resp.json()


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------

class TestEntitiesApi:

    async def test_create_and_upsert(self, client):
        resp = await client.post("/entities", json={
            "name": "Alice", "type": "Person", "aliases": ["Al"],
        })
        assert resp.status_code == 201
        created = resp.json()
        assert created["accessCount"] == 0
        assert created["version"] == 1
        assert created["namespace"] is None

        resp = await client.post("/entities", json={
            "name": "Alice", "type": "Person", "aliases": ["Ali"], "description": "Engineer",
        })
        assert resp.status_code == 200
        upserted = resp.json()
        assert upserted["id"] == created["id"]
        assert upserted["aliases"] == ["Al", "Ali"]
        assert upserted["description"] == "Engineer"

    async def test_list_by_namespace(self, client):
        await _create(client, "Alice")
        await _create(client, "Alice", namespace="work")

        assert len((await client.get("/entities")).json()) == 2
        work = (await client.get("/entities", params={"namespace": "work"})).json()
        assert [e["namespace"] for e in work] == ["work"]
        global_only = (await client.get("/entities", params={"global": "true"})).json()
        assert [e["namespace"] for e in global_only] == [None]

    async def test_get_update_delete(self, client):
        alice = await _create(client, "Alice")

        resp = await client.put(f"/entities/{alice['id']}", json={"tags": ["vip"]})
        assert resp.status_code == 200
        assert resp.json()["tags"] == ["vip"]
        assert resp.json()["version"] == 2

        assert (await client.get(f"/entities/{alice['id']}")).json()["tags"] == ["vip"]

        resp = await client.delete(f"/entities/{alice['id']}")
        assert resp.json() == {"status": "deleted", "entity_id": alice["id"]}
        assert (await client.get(f"/entities/{alice['id']}")).status_code == 404

    async def test_not_found_shape(self, client):
        resp = await client.get("/entities/missing")
        assert resp.status_code == 404
        assert resp.json() == {"error": "Entity not found: missing", "details": None}

    async def test_rename_conflict(self, client):
        await _create(client, "Alice")
        bob = await _create(client, "Bob")
        resp = await client.put(f"/entities/{bob['id']}", json={"name": "Alice"})
        assert resp.status_code == 409

    async def test_malformed_body(self, client):
        resp = await client.post("/entities", json={"name": "Alice", "colour": "red"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "Invalid request"

    async def test_validation_rules_enforced(self, client):
        resp = await client.post("/validation-rules", json={
            "entityType": "Person",
            "rules": [{
                "field": "name", "rule": "min_length", "params": {"value": 3},
                "errorMessage": "Name too short",
            }],
        })
        assert resp.status_code == 200
        assert resp.json()["rules"][0]["errorMessage"] == "Name too short"

        resp = await client.post("/entities", json={"name": "Al", "type": "Person"})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Name too short", "details": ["Name too short"]}

        assert len((await client.get("/validation-rules")).json()) == 1
        resp = await client.delete("/validation-rules/Person")
        assert resp.status_code == 200
        assert (await client.delete("/validation-rules/Person")).status_code == 404
        assert (await client.post("/entities", json={"name": "Al", "type": "Person"})).status_code == 201

    async def test_invalid_rule_definition(self, client):
        resp = await client.post("/validation-rules", json={
            "entityType": "Person",
            "rules": [{"field": "name", "rule": "pattern", "params": {"regex": "("}}],
        })
        assert resp.status_code == 400
        assert "invalid regex" in resp.json()["error"]


# ---------------------------------------------------------------------------
# Relationships and predicates
# ---------------------------------------------------------------------------

class TestRelationshipsApi:

    async def test_relationship_lifecycle(self, client):
        alice = await _create(client, "Alice")
        acme = await _create(client, "Acme", "Company")

        resp = await client.post("/entities/relationships", json={
            "sourceEntityId": alice["id"],
            "targetEntityId": acme["id"],
            "predicateName": "works_at",
            "context": "From onboarding notes",
        })
        assert resp.status_code == 201
        edge = resp.json()
        assert edge["predicateName"] == "works_at"
        assert edge["verificationStatus"] == "Unverified"

        again = await client.post("/entities/relationships", json={
            "sourceEntityId": alice["id"],
            "targetEntityId": acme["id"],
            "predicateName": "works_at",
        })
        assert again.status_code == 200
        assert again.json()["id"] == edge["id"]

        listed = (await client.get("/entities/relationships", params={"entity_id": acme["id"]})).json()
        assert [e["id"] for e in listed] == [edge["id"]]

        resp = await client.put(f"/entities/relationships/{edge['id']}", json={
            "predicateName": "employed_by", "verificationStatus": "Verified",
        })
        assert resp.status_code == 200
        assert resp.json()["predicateName"] == "employed_by"
        assert resp.json()["verificationStatus"] == "Verified"
        assert resp.json()["lastVerifiedAt"] is not None

        resp = await client.delete(f"/entities/relationships/{edge['id']}")
        assert resp.status_code == 200
        assert (await client.get("/entities/relationships")).json() == []

    async def test_relationship_from_names(self, client):
        alice = await _create(client, "Alice")
        acme = await _create(client, "Acme", "Company")
        body = {"source": "Alice", "predicate": "works_at", "target": "Acme"}

        resp = await client.post("/entities/relationships/from-names", json=body)
        assert resp.status_code == 201
        edge = resp.json()
        assert (edge["sourceEntityId"], edge["targetEntityId"]) == (alice["id"], acme["id"])
        assert edge["predicateName"] == "works_at"

        again = await client.post("/entities/relationships/from-names", json=body)
        assert again.status_code == 200
        assert again.json()["id"] == edge["id"]

        resp = await client.post(
            "/entities/relationships/from-names",
            json={"source": "Alice", "predicate": "knows", "target": "Zed"},
        )
        assert resp.status_code == 404
        assert resp.json()["error"] == "Entity not found: Zed"

    async def test_unused_entities(self, client):
        alice = await _create(client, "Alice")
        acme = await _create(client, "Acme", "Company")
        await _create(client, "Carol")
        await _relate(client, alice, "works_at", acme)

        unused = (await client.get("/entities/unused")).json()
        assert [e["name"] for e in unused] == ["Carol"]

    async def test_relationship_to_missing_entity(self, client):
        alice = await _create(client, "Alice")
        resp = await client.post("/entities/relationships", json={
            "sourceEntityId": alice["id"], "targetEntityId": "missing", "predicateName": "knows",
        })
        assert resp.status_code == 404

    async def test_predicates(self, client):
        resp = await client.post("/predicates", json={"name": "knows", "isSymmetric": True})
        assert resp.status_code == 201
        predicate = resp.json()
        assert predicate["isSymmetric"] is True

        resp = await client.post("/predicates", json={"name": "knows", "description": "Acquainted"})
        assert resp.status_code == 200
        assert resp.json()["id"] == predicate["id"]

        resp = await client.put(f"/predicates/{predicate['id']}", json={"name": "is_acquainted_with"})
        assert resp.json()["name"] == "is_acquainted_with"

        alice = await _create(client, "Alice")
        bob = await _create(client, "Bob")
        await _relate(client, alice, "is_acquainted_with", bob)

        assert (await client.delete(f"/predicates/{predicate['id']}")).status_code == 200
        assert (await client.get("/predicates")).json() == []
        assert (await client.get("/entities/relationships")).json() == []


# ---------------------------------------------------------------------------
# Consistency
# ---------------------------------------------------------------------------

class TestConsistencyApi:

    async def test_duplicates_and_merge(self, client):
        smith = await _create(client, "Alice Smith")
        smyth = await _create(client, "Alice Smyth")
        acme = await _create(client, "Acme", "Company")
        await _relate(client, smyth, "works_at", acme)

        pairs = (await client.get("/entities/duplicates")).json()
        assert len(pairs) == 1
        assert pairs[0]["similarity"] == pytest.approx(0.6)
        assert {pairs[0]["entity1"]["id"], pairs[0]["entity2"]["id"]} == {smith["id"], smyth["id"]}

        resp = await client.post("/entities/merge", json={
            "targetId": smith["id"], "sourceId": smyth["id"],
        })
        assert resp.status_code == 200
        assert resp.json()["aliases"] == ["Alice Smyth"]

        edges = (await client.get("/entities/relationships")).json()
        assert [(e["sourceEntityId"], e["targetEntityId"]) for e in edges] == [
            (smith["id"], acme["id"])
        ]
        assert (await client.get(f"/entities/{smyth['id']}")).status_code == 404
        assert (await client.get("/entities/duplicates")).json() == []

    async def test_split(self, client):
        jordan = await _create(client, "Jordan")
        acme = await _create(client, "Acme", "Company")
        boston = await _create(client, "Boston", "City")
        works = await _relate(client, jordan, "works_at", acme)
        lives = await _relate(client, jordan, "lives_in", boston)

        resp = await client.post("/entities/split", json={
            "sourceEntityId": jordan["id"],
            "newEntities": [
                {"id": "a", "name": "Jordan Lee", "type": "Person"},
                {"id": "b", "name": "Jordan Park", "type": "Person"},
            ],
            "relationshipMigrations": [
                {"relationshipId": works["id"], "newOwnerEntityId": "a"},
                {"relationshipId": lives["id"], "newOwnerEntityId": "DELETE"},
            ],
        })
        assert resp.status_code == 201
        created = resp.json()["created"]
        assert created["a"]["name"] == "Jordan Lee"
        assert created["b"]["name"] == "Jordan Park"

        edges = (await client.get("/entities/relationships")).json()
        assert [(e["sourceEntityId"], e["predicateName"]) for e in edges] == [
            (created["a"]["id"], "works_at")
        ]

    async def test_split_rejects_unknown_relationship(self, client):
        jordan = await _create(client, "Jordan")
        resp = await client.post("/entities/split", json={
            "sourceEntityId": jordan["id"],
            "newEntities": [
                {"id": "a", "name": "Jordan Lee", "type": "Person"},
                {"id": "b", "name": "Jordan Park", "type": "Person"},
            ],
            "relationshipMigrations": [{"relationshipId": "nope", "newOwnerEntityId": "a"}],
        })
        assert resp.status_code == 400
        assert resp.json()["details"] == [f"Relationship nope does not belong to entity {jordan['id']}"]
        assert (await client.get(f"/entities/{jordan['id']}")).status_code == 200

    async def test_bulk_actions(self, client):
        alice = await _create(client, "Alice")
        bob = await _create(client, "Bob")

        resp = await client.post("/entities/bulk-actions", json={
            "action": "add_tags", "ids": [alice["id"], bob["id"], "ghost"], "payload": {"tags": ["team"]},
        })
        assert resp.json() == {
            "action": "add_tags", "affected": [alice["id"], bob["id"]], "missing": ["ghost"],
        }

        resp = await client.post("/entities/bulk-actions", json={
            "action": "delete", "ids": [alice["id"]],
        })
        assert resp.json()["affected"] == [alice["id"]]
        remaining = (await client.get("/entities")).json()
        assert [(e["name"], e["tags"]) for e in remaining] == [("Bob", ["team"])]

        resp = await client.post("/entities/bulk-actions", json={"action": "explode", "ids": ["x"]})
        assert resp.status_code == 400


# ---------------------------------------------------------------------------
# Memory pipelines and inspection
# ---------------------------------------------------------------------------

class TestMemoryApi:

    async def test_pipeline_runs_in_background(self, client, llm, job_queue):
        llm.extraction = {
            "entities": [
                {"name": "Alice", "type": "Person", "description": "Engineer"},
                {"name": "Acme", "type": "Company", "description": "Employer"},
            ],
            "knowledge": ["Alice works at Acme."],
            "relationships": [{"source": "Alice", "predicate": "works_at", "target": "Acme"}],
        }
        resp = await client.post("/memory/pipeline", json={
            "textToAnalyze": "Alice works at Acme.", "aiMessageId": "ai-1",
        })
        assert resp.status_code == 202
        assert resp.json() == {"status": "accepted", "messageId": "ai-1"}

        await job_queue.join()
        assert job_queue.stats.completed == 1

        inspection = (await client.get("/inspect/ai-1")).json()
        assert inspection["pipelineRun"]["pipelineType"] == "MemoryExtraction"
        assert inspection["pipelineRun"]["status"] == "completed"
        assert len(inspection["pipelineSteps"]) == 6
        assert len((await client.get("/entities")).json()) == 2

    async def test_background_failure_is_traced(self, client, llm, job_queue):
        llm.failures_left = 10
        resp = await client.post("/memory/pipeline", json={
            "textToAnalyze": "Alice works at Acme.", "aiMessageId": "ai-2",
        })
        assert resp.status_code == 202

        await job_queue.join()
        assert job_queue.stats.failed == 1
        assert job_queue.stats.retried == 0

        inspection = (await client.get("/inspect/ai-2")).json()
        assert [r["status"] for r in inspection["allRuns"]] == ["failed"]
        assert inspection["pipelineSteps"][-1]["stepName"] == "llm_extraction"

    async def test_context_endpoint(self, client):
        alice = await _create(client, "Alice", description="Engineer")
        acme = await _create(client, "Acme", "Company")
        await _relate(client, alice, "works_at", acme)
        conversation = (await client.post("/conversations", json={"title": "t"})).json()
        message = (await client.post(
            f"/conversations/{conversation['id']}/messages",
            json={"role": "user", "content": "What does Alice do?"},
        )).json()

        resp = await client.post("/memory/context", json={
            "conversationId": conversation["id"],
            "userQuery": "What does Alice do?",
            "messageId": message["id"],
            "mentionedEntities": [],
        })
        assert resp.status_code == 200
        body = resp.json()
        assert "- Alice (Person): Engineer" in body["context"]
        assert "- Alice works at Acme" in body["context"]
        assert body["tiers"]["graph"]["status"] == "success"
        assert set(body["tiers"]) == {"episodic", "semantic", "structured", "graph"}

        inspection = (await client.get(f"/inspect/{message['id']}")).json()
        assert inspection["pipelineRun"]["id"] == body["runId"]
        assert inspection["pipelineRun"]["finalOutput"] == body["context"]

    async def test_extract_from_conversation_preview(self, client, llm):
        llm.extraction = {
            "entities": [{"name": "Alice", "type": "Person"}], "knowledge": [], "relationships": [],
        }
        conversation = (await client.post("/conversations", json={})).json()
        resp = await client.get(f"/memory/extract-from-conversation/{conversation['id']}")
        assert resp.status_code == 404

        await client.post(
            f"/conversations/{conversation['id']}/messages",
            json={"role": "user", "content": "I met Alice"},
        )
        resp = await client.get(f"/memory/extract-from-conversation/{conversation['id']}")
        assert resp.status_code == 200
        assert resp.json()["entities"][0]["name"] == "Alice"
        assert (await client.get("/entities")).json() == []

    async def test_inspect_unknown_message(self, client):
        assert (await client.get("/inspect/nothing")).status_code == 404


# ---------------------------------------------------------------------------
# Conversations and contacts
# ---------------------------------------------------------------------------

class TestConversationsApi:

    async def test_turn(self, client, llm, job_queue):
        llm.reply = "Alice is an engineer at Acme."
        alice = await _create(client, "Alice", description="Engineer")
        conversation = (await client.post("/conversations", json={"title": "chat"})).json()

        resp = await client.post(f"/conversations/{conversation['id']}/turn", json={
            "content": "Remind me about her", "mentionedEntityIds": [alice["id"]],
        })
        assert resp.status_code == 200
        turn = resp.json()
        assert turn["assistantMessage"]["content"] == "Alice is an engineer at Acme."
        assert turn["extractionQueued"] is True
        # The mentioned entity reaches the context even though the text never names it
        assert "Alice (Person): Engineer" in llm.prompts[0]

        await job_queue.join()

        messages = (await client.get(f"/conversations/{conversation['id']}/messages")).json()
        assert [m["role"] for m in messages] == ["user", "assistant"]

        context_run = (await client.get(f"/inspect/{turn['userMessage']['id']}")).json()
        assert context_run["pipelineRun"]["id"] == turn["contextRunId"]
        extraction_run = (await client.get(f"/inspect/{turn['assistantMessage']['id']}")).json()
        assert extraction_run["pipelineRun"]["pipelineType"] == "MemoryExtraction"

    async def test_turn_unknown_conversation(self, client):
        resp = await client.post("/conversations/missing/turn", json={"content": "hi"})
        assert resp.status_code == 404

    async def test_message_with_unknown_entity(self, client):
        conversation = (await client.post("/conversations", json={})).json()
        resp = await client.post(f"/conversations/{conversation['id']}/messages", json={
            "role": "user", "content": "hi", "mentionedEntityIds": ["ghost"],
        })
        assert resp.status_code == 404
        assert (await client.get(f"/conversations/{conversation['id']}/messages")).json() == []

    async def test_link_prediction(self, client, llm):
        llm.predicate = "deploys"
        k8s = await _create(client, "Kubernetes", "Technology")
        pg = await _create(client, "Postgres", "Technology")
        conversation = (await client.post("/conversations", json={})).json()
        url = f"/conversations/{conversation['id']}/link-prediction"

        for _ in range(2):
            assert (await client.get(url)).json() is None
            await client.post(f"/conversations/{conversation['id']}/messages", json={
                "role": "user", "content": "k8s and pg", "mentionedEntityIds": [k8s["id"], pg["id"]],
            })

        proposal = (await client.get(url)).json()
        assert proposal["suggestedPredicate"] == "deploys"
        assert {proposal["sourceEntity"]["name"], proposal["targetEntity"]["name"]} == {
            "Kubernetes", "Postgres",
        }

    async def test_contacts(self, client):
        resp = await client.post("/contacts", json={"name": "Dana", "company": "Acme"})
        assert resp.status_code == 201
        assert [c["name"] for c in (await client.get("/contacts")).json()] == ["Dana"]


async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"
    assert (await client.get("/")).json()["name"] == "CogniMem"
