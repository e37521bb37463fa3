"""API tests for /api/proposals: inbox check, listing, comparison."""

from procurement.models.proposal import Proposal
from conftest import make_email

EXTRACTION = {
    "pricing": {"totalPrice": 42000, "itemPrices": [], "currency": "usd"},
    "terms": {"paymentTerms": "Net 30", "warranty": "2 years", "deliveryTime": "3 weeks"},
    "notes": "Free shipping",
}


class TestCheckEmails:
    def test_ingests_tagged_replies(self, client, db_session, fake_imap, fake_completion, rfp_factory, vendor_factory):
        rfp = rfp_factory(status="sent")
        vendor = vendor_factory(email="sales@acme.test")
        fake_imap.add(b"10", make_email(f"Re: RFP-{rfp.id}: Office laptops", "Acme <Sales@Acme.test>", "We quote $42,000"))
        fake_imap.add(b"11", make_email("RFP question", "sales@acme.test", "Is delivery flexible?"))
        fake_completion.responses.append(EXTRACTION)

        response = client.post("/api/proposals/check-emails")

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert (data["processed"], data["skipped"], data["failed"]) == (1, 1, 0)
        assert data["message"] == "Processed 1 new proposals"
        created = data["results"][0]
        assert created["outcome"] == "created"
        assert created["uid"] == "10"
        assert data["results"][1]["reason"] == "no_rfp_token"

        proposal = db_session.get(Proposal, created["proposalId"])
        assert proposal.vendor_id == vendor.id
        assert proposal.rfp_id == rfp.id

    def test_empty_inbox(self, client):
        data = client.post("/api/proposals/check-emails").json()
        assert data["processed"] == 0
        assert data["message"] == "No new emails"

    def test_mailbox_unreachable(self, client, fake_imap):
        fake_imap.fail_login = True
        response = client.post("/api/proposals/check-emails")
        assert response.status_code == 500
        assert response.json()["message"] == "Server error while checking emails"


class TestListAndGet:
    def test_list_for_rfp(self, client, rfp_factory, vendor_factory, proposal_factory):
        rfp, other = rfp_factory(), rfp_factory(title="Other")
        a, b = vendor_factory(name="Acme"), vendor_factory(name="Globex")
        proposal_factory(rfp, a, total_price=42000)
        proposal_factory(rfp, b, total_price=39000)
        proposal_factory(other, a, total_price=1)

        data = client.get(f"/api/proposals/rfp/{rfp.id}").json()

        assert data["count"] == 2
        assert [p["vendor"]["name"] for p in data["proposals"]] == ["Globex", "Acme"]
        first = data["proposals"][0]
        assert first["pricing"] == {"totalPrice": 39000, "itemPrices": [], "currency": "USD"}
        assert first["terms"]["deliveryTime"] == "2 weeks"
        assert first["aiScore"] is None

    def test_list_for_rfp_without_proposals(self, client, rfp_factory):
        data = client.get(f"/api/proposals/rfp/{rfp_factory().id}").json()
        assert data == {"success": True, "count": 0, "proposals": []}

    def test_get(self, client, rfp_factory, vendor_factory, proposal_factory):
        rfp = rfp_factory(title="Office laptops")
        proposal = proposal_factory(rfp, vendor_factory(name="Acme"), total_price=42000)

        data = client.get(f"/api/proposals/{proposal.id}").json()["proposal"]

        assert data["vendor"]["name"] == "Acme"
        assert data["rfp"]["title"] == "Office laptops"
        assert data["rfp"]["budget"] == 50000
        assert data["rawEmail"] == "Our quote is $42000"
        assert data["parsedData"] == {"notes": "n/a"}

    def test_get_missing(self, client):
        response = client.get("/api/proposals/999")
        assert response.status_code == 404
        assert response.json()["message"] == "Proposal not found"


class TestCompare:
    def _seed(self, rfp_factory, vendor_factory, proposal_factory):
        rfp = rfp_factory()
        vendors = [vendor_factory(name=n) for n in ("Acme", "Globex", "Initech")]
        proposals = [proposal_factory(rfp, v, total_price=p) for v, p in zip(vendors, (48000, 42000, 51000))]
        return rfp, vendors, proposals

    def test_compare_scores_and_recommends(self, client, db_session, fake_completion, rfp_factory, vendor_factory, proposal_factory):
        rfp, vendors, proposals = self._seed(rfp_factory, vendor_factory, proposal_factory)
        fake_completion.responses.append({
            "scores": [70, 92, 55],
            "summaries": ["Solid", "Cheapest with good terms", "Over budget"],
            "recommendation": {"vendorIndex": 2, "reasoning": "Lowest price within budget"},
        })

        response = client.get(f"/api/proposals/{rfp.id}/compare")

        assert response.status_code == 200
        data = response.json()
        comparison = data["comparison"]
        assert comparison["scores"] == [70, 92, 55]
        assert comparison["recommendation"] == {
            "vendorIndex": 2,
            "vendorId": vendors[1].id,
            "vendorName": "Globex",
            "reasoning": "Lowest price within budget",
        }
        assert [p["vendorId"] for p in data["proposals"]] == [v.id for v in vendors]
        assert [p["aiScore"] for p in data["proposals"]] == [70, 92, 55]
        for p, summary in zip(proposals, comparison["summaries"]):
            db_session.refresh(p)
            assert p.ai_summary == summary

        # The prompt numbers proposals in the same order as the response.
        _, prompt = fake_completion.calls[0]
        assert prompt.index('"vendorName": "Acme"') < prompt.index('"vendorName": "Globex"') < prompt.index('"vendorName": "Initech"')

    def test_out_of_range_recommendation_is_rejected(self, client, db_session, fake_completion, rfp_factory, vendor_factory, proposal_factory):
        rfp, _, proposals = self._seed(rfp_factory, vendor_factory, proposal_factory)
        fake_completion.responses.append({
            "scores": [70, 92, 55],
            "summaries": ["a", "b", "c"],
            "recommendation": {"vendorIndex": 4, "reasoning": "?"},
        })

        response = client.get(f"/api/proposals/{rfp.id}/compare")

        assert response.status_code == 500
        assert response.json()["message"] == "AI service request failed"
        for p in proposals:
            db_session.refresh(p)
            assert p.ai_score is None

    def test_ai_unreachable(self, client, rfp_factory, vendor_factory, proposal_factory):
        rfp, _, _ = self._seed(rfp_factory, vendor_factory, proposal_factory)
        response = client.get(f"/api/proposals/{rfp.id}/compare")
        assert response.status_code == 500
        assert response.json()["success"] is False

    def test_no_proposals(self, client, fake_completion, rfp_factory):
        response = client.get(f"/api/proposals/{rfp_factory().id}/compare")
        assert response.status_code == 404
        assert response.json()["message"] == "No proposals found for this RFP"
        assert fake_completion.calls == []

    def test_missing_rfp(self, client):
        response = client.get("/api/proposals/42/compare")
        assert response.status_code == 404
        assert response.json()["message"] == "RFP not found"
